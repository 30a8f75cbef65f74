"""
Tunesmith Repository Layer
Data access layer with async CRUD operations
"""

from .base import BaseRepository, RepositoryError, NotFoundError, ConflictError
from .generation_repository import GenerationRepository
from .track_repository import TrackRepository
from .stem_repository import StemRepository

__all__ = [
    "BaseRepository",
    "RepositoryError",
    "NotFoundError",
    "ConflictError",
    "GenerationRepository",
    "TrackRepository",
    "StemRepository"
]
