"""eventradar - location-aware event ingestion and retrieval service."""

__version__ = "0.1.0"
