"""Syntax-tree helpers."""
