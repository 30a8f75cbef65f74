"""
Tunesmith Database Module
Exports database models, connection management, and Base
"""

from .connection import Base, DatabaseManager, database_manager
from .models import (
    GenerationTask,
    Track,
    TrackStem,
    StemSeparationJob
)

__all__ = [
    "Base",
    "DatabaseManager",
    "database_manager",
    "GenerationTask",
    "Track",
    "TrackStem",
    "StemSeparationJob"
]
