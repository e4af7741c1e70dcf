"""Database package for eventradar."""

from .connections import DatabaseManager
from .repositories import (
    CategoryRepository,
    EventRepository,
    SourceRepository,
)

__all__ = [
    "DatabaseManager",
    "CategoryRepository",
    "EventRepository",
    "SourceRepository",
]
