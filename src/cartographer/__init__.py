"""Cartographer: map-delta ingestion for interactive narrative engines."""

__version__ = "0.1.0"
