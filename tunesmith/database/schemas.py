"""
Tunesmith Pydantic Schemas
Request/response models for API validation and serialization
"""

import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, Field, ConfigDict


# Base configuration for all schemas
class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        validate_assignment=True,
        arbitrary_types_allowed=True,
        populate_by_name=True
    )


# Generation Schemas
class GenerationOptions(BaseSchema):
    """Provider-independent generation options"""
    title: Optional[str] = Field(None, max_length=255, description="Song title")
    style: Optional[str] = Field(None, max_length=1000, description="Style tags, comma separated")
    lyrics: Optional[str] = Field(None, description="Custom lyrics")
    instrumental: bool = Field(default=False, description="Generate without vocals")
    model: Optional[str] = Field(None, description="Provider model name")


class GenerationCreate(GenerationOptions):
    """Schema for requesting a generation"""
    prompt: str = Field(..., max_length=5000, description="Song description")
    service: Literal["suno", "mureka"] = Field(default="suno", description="Provider service")


class GenerationResponse(BaseSchema):
    """Schema for generation task responses"""
    id: uuid.UUID
    user_id: uuid.UUID
    service: str
    external_task_id: Optional[str] = None
    status: str
    progress: int
    prompt: str
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    failure_reason: Optional[str] = None
    track_id: Optional[uuid.UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# Track Schemas
class TrackResponse(BaseSchema):
    """Schema for track responses"""
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    audio_url: Optional[str] = None
    duration: Optional[float] = None
    lyrics: Optional[str] = None
    image_url: Optional[str] = None
    external_task_id: Optional[str] = None
    source_index: Optional[int] = None
    variant_group_id: Optional[uuid.UUID] = None
    variant_number: Optional[int] = None
    is_master_variant: bool = False
    storage_status: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime


# Variant grouping
class VariantUpdate(BaseSchema):
    """One track rewritten by the variant grouper"""
    track_id: uuid.UUID
    task_id: str
    variant_group_id: uuid.UUID
    variant_number: int
    is_master_variant: bool


class VariantFailure(BaseSchema):
    track_id: uuid.UUID
    task_id: str
    error: str


class GroupingSummary(BaseSchema):
    """Result of a variant grouping batch"""
    groups_updated: int = 0
    tracks_updated: int = 0
    updates: List[VariantUpdate] = Field(default_factory=list)
    failures: List[VariantFailure] = Field(default_factory=list)


class GroupTracksRequest(BaseSchema):
    task_id: Optional[str] = Field(None, description="Restrict grouping to one provider task")


# Storage sync
class StorageSyncItem(BaseSchema):
    track_id: uuid.UUID
    success: bool
    audio_url: Optional[str] = None
    error: Optional[str] = None


class StorageSyncSummary(BaseSchema):
    """Result of a storage sync sweep"""
    total: int = 0
    successes: int = 0
    failures: int = 0
    processed: List[StorageSyncItem] = Field(default_factory=list)


class AudioUrlResponse(BaseSchema):
    """Download link for a track's audio"""
    track_id: uuid.UUID
    url: str
    stored: bool
    expires_at: Optional[datetime] = None


# Stem Schemas
class StemSeparationCreate(BaseSchema):
    """Schema for requesting stem separation"""
    mode: Literal["simple", "detailed"] = Field(default="simple", description="Vocal split or full stem split")
    variant_number: int = Field(default=1, ge=1)


class TrackStemResponse(BaseSchema):
    id: uuid.UUID
    track_id: uuid.UUID
    variant_number: int
    separation_mode: str
    stem_type: str
    stem_name: str
    stem_url: str
    file_size: Optional[int] = None
    duration: Optional[float] = None
    created_at: datetime


class StemJobResponse(BaseSchema):
    """Schema for stem separation job responses"""
    id: uuid.UUID
    track_id: uuid.UUID
    variant_number: int
    service: str
    external_task_id: Optional[str] = None
    separation_mode: str
    status: str
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


# Rate limit and notifications
class RateLimitResponse(BaseSchema):
    service: str
    allowed: bool
    remaining: int
    limit: int
    reset_time: datetime
    retry_after: Optional[int] = None


class NotificationResponse(BaseSchema):
    id: uuid.UUID
    kind: str
    title: str
    message: str
    level: str
    task_id: Optional[uuid.UUID] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class PollSweepSummary(BaseSchema):
    """Result of one server-side polling sweep"""
    checked: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    still_running: int = 0
