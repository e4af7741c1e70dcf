"""Database repositories for data access layer."""

from .base import BaseRepository
from .event_repository import EventRepository
from .reference_repository import CategoryRepository, NamedReferenceRepository, SourceRepository

__all__ = [
    "BaseRepository",
    "CategoryRepository",
    "EventRepository",
    "NamedReferenceRepository",
    "SourceRepository",
]
