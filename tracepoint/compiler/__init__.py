"""Marker expansion and per-category code generation."""
