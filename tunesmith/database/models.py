"""
Tunesmith Database Models
SQLAlchemy ORM models for generation tasks, tracks and stems
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    String,
    Integer,
    Float,
    Boolean,
    Text,
    TIMESTAMP,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from .connection import Base
from ..core.timeutils import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Generation status values
STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

# Track storage status values
STORAGE_EXTERNAL = "external"
STORAGE_DOWNLOADING = "downloading"
STORAGE_STORED = "stored"
STORAGE_FAILED = "failed"


class GenerationTask(Base):
    """One request to an external AI music provider"""
    __tablename__ = "generation_tasks"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # Provider identity, written once after dispatch
    service: Mapped[str] = mapped_column(String(20), nullable=False)  # "suno", "mureka"
    external_task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Processing state
    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # 0 to 100
    prompt: Mapped[str] = mapped_column(Text, nullable=False)

    # Results
    result_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # provider, timeout, cancelled
    track_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("tracks.id", ondelete="SET NULL"),
        nullable=True
    )
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<GenerationTask(id={self.id}, service='{self.service}', status='{self.status}')>"


class Track(Base):
    """Playable music asset, generated or uploaded"""
    __tablename__ = "tracks"
    __table_args__ = (
        UniqueConstraint("external_task_id", "source_index", name="uq_tracks_task_source"),
    )

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # Track content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # seconds
    lyrics: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Generation origin; position of the take inside the provider payload
    external_task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Variant grouping
    variant_group_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    variant_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_master_variant: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Storage and lifecycle
    storage_status: Mapped[str] = mapped_column(String(20), default=STORAGE_EXTERNAL, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    @property
    def task_id(self) -> Optional[str]:
        """Provider task id, falling back to ids recorded in metadata"""
        meta = self.meta or {}
        return self.external_task_id or meta.get("task_id") or meta.get("mureka_task_id")

    def __repr__(self) -> str:
        return f"<Track(id={self.id}, title='{self.title}', variant={self.variant_number})>"


class TrackStem(Base):
    """Isolated instrument or vocal component of one track variant"""
    __tablename__ = "track_stems"
    __table_args__ = (
        UniqueConstraint("track_id", "variant_number", "stem_type", name="uq_track_stems_variant_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    track_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tracks.id", ondelete="CASCADE"),
        nullable=False
    )
    variant_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    separation_mode: Mapped[str] = mapped_column(String(20), default="simple", nullable=False)  # simple, detailed
    stem_type: Mapped[str] = mapped_column(String(50), nullable=False)
    stem_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stem_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # bytes
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<TrackStem(track_id={self.track_id}, variant={self.variant_number}, type='{self.stem_type}')>"


class StemSeparationJob(Base):
    """Outstanding provider stem separation request"""
    __tablename__ = "stem_separation_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    track_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tracks.id", ondelete="CASCADE"),
        nullable=False
    )
    variant_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    service: Mapped[str] = mapped_column(String(20), nullable=False)
    external_task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    separation_mode: Mapped[str] = mapped_column(String(20), default="simple", nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP, nullable=True)

    def __repr__(self) -> str:
        return f"<StemSeparationJob(id={self.id}, service='{self.service}', status='{self.status}')>"


# Performance indexes
Index("ix_generation_tasks_user_id", GenerationTask.user_id, GenerationTask.created_at)
Index("ix_generation_tasks_status", GenerationTask.status)
Index("ix_generation_tasks_external", GenerationTask.service, GenerationTask.external_task_id)
Index("ix_tracks_user_id", Track.user_id, Track.created_at)
Index("ix_tracks_variant_group", Track.variant_group_id)
Index("ix_tracks_storage_status", Track.storage_status)
Index("ix_track_stems_track_id", TrackStem.track_id)
Index("ix_stem_jobs_track_id", StemSeparationJob.track_id)
