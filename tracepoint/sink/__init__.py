"""Trace output: event routing, sinks and sink sessions."""
