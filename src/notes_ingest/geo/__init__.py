"""Geospatial primitives: zones and geometry helpers."""
