"""Catalyst Launch integration ingestion and sync service."""

__version__ = "0.1.0"
