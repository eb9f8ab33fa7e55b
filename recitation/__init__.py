# recitation/__init__.py
"""Recitation navigation and playback engine: query matching, verse search and per-ayah audio playback."""

VERSION = "1.0.0"
