"""Operator resolution, the classification hierarchy and the form classifier."""
