"""
Provider Payload Normalization
Tagged provider completion payloads and their mapping onto the canonical
generation states
"""

from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

# Canonical states
PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

# Synthetic progress per provider status; providers expose no real percentage
SUNO_STATUS_MAP = {
    "PENDING": (PENDING, 25),
    "TEXT_SUCCESS": (RUNNING, 50),
    "FIRST_SUCCESS": (RUNNING, 75),
    "SUCCESS": (COMPLETED, 100),
    "SENSITIVE_WORD_ERROR": (FAILED, 0),
}

MUREKA_STATUS_MAP = {
    "preparing": (PENDING, 25),
    "queued": (PENDING, 25),
    "pending": (PENDING, 25),
    "running": (RUNNING, 50),
    "streaming": (RUNNING, 75),
    "succeeded": (COMPLETED, 100),
    "failed": (FAILED, 0),
    "timeouted": (FAILED, 0),
    "cancelled": (FAILED, 0),
}

# Per-take URL keys, most preferred first
TRACK_URL_KEYS = (
    "audio_url",
    "audioUrl",
    "stream_audio_url",
    "streamAudioUrl",
    "source_audio_url",
    "sourceAudioUrl",
    "url",
)


class NormalizedTrack(BaseModel):
    """One finished take in provider-independent form"""
    audio_url: str
    title: Optional[str] = None
    duration: Optional[float] = None
    lyrics: Optional[str] = None
    image_url: Optional[str] = None
    tags: Optional[str] = None
    provider_track_id: Optional[str] = None
    model_name: Optional[str] = None


class ProviderStatus(BaseModel):
    """Canonical view of one provider status response"""
    state: Literal["pending", "running", "completed", "failed"]
    progress: int = 0
    raw_status: Optional[str] = None
    tracks: List[NormalizedTrack] = Field(default_factory=list)
    error_message: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state in (COMPLETED, FAILED)


class SunoCompletionPayload(BaseModel):
    """`data` object of a Suno record-info response or completion callback"""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    provider: Literal["suno"] = "suno"
    task_id: Optional[str] = Field(None, alias="taskId")
    status: Optional[str] = None
    error_message: Optional[str] = Field(None, alias="errorMessage")
    response: Optional[Dict[str, Any]] = None


class MurekaCompletionPayload(BaseModel):
    """Body of a Mureka song query response"""
    model_config = ConfigDict(extra="allow")

    provider: Literal["mureka"] = "mureka"
    id: Optional[str] = None
    status: Optional[str] = None
    failed_reason: Optional[str] = None
    choices: Optional[List[Dict[str, Any]]] = None
    audio_urls: Optional[List[str]] = None
    lyrics: Optional[str] = None


CompletionPayload = Union[SunoCompletionPayload, MurekaCompletionPayload]


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """First non-empty value among `keys`"""
    for key in keys:
        value = data.get(key)
        if value not in (None, "", []):
            return value
    return None


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def extract_audio_url(payload: Dict[str, Any]) -> Optional[str]:
    """
    Pick the best audio URL out of a loosely shaped completion payload.

    Order: nested per-take URLs, `choices[]`, `audio_urls[0]`, a top-level
    audio URL, then `result_url`.
    """
    if not isinstance(payload, dict):
        return None

    nested_lists = [
        payload.get("tracks"),
        (payload.get("response") or {}).get("sunoData") if isinstance(payload.get("response"), dict) else None,
        payload.get("data") if isinstance(payload.get("data"), list) else None,
    ]
    for items in nested_lists:
        for item in items or []:
            if isinstance(item, dict):
                url = _first(item, *TRACK_URL_KEYS)
                if url:
                    return url

    for choice in payload.get("choices") or []:
        if isinstance(choice, dict):
            url = _first(choice, "audio_url", "url")
            if url:
                return url

    audio_urls = [url for url in payload.get("audio_urls") or [] if url]
    if audio_urls:
        return audio_urls[0]

    return _first(payload, "audio_url", "audioUrl", "result_url")


def _suno_track(item: Dict[str, Any]) -> Optional[NormalizedTrack]:
    url = _first(item, *TRACK_URL_KEYS)
    if not url:
        return None
    return NormalizedTrack(
        audio_url=url,
        title=_first(item, "title"),
        duration=_as_float(_first(item, "duration")),
        lyrics=_first(item, "lyric", "lyrics", "prompt"),
        image_url=_first(item, "image_url", "imageUrl"),
        tags=_first(item, "tags", "style"),
        provider_track_id=_first(item, "id"),
        model_name=_first(item, "model_name", "modelName"),
    )


def suno_tracks(items: List[Dict[str, Any]]) -> List[NormalizedTrack]:
    """Normalize a list of Suno takes, skipping takes without audio"""
    tracks = []
    for item in items or []:
        if isinstance(item, dict):
            track = _suno_track(item)
            if track is not None:
                tracks.append(track)
    return tracks


def normalize_suno(payload: SunoCompletionPayload) -> ProviderStatus:
    """Map a Suno record-info payload onto the canonical model"""
    raw_status = (payload.status or "PENDING").upper()

    if raw_status in SUNO_STATUS_MAP:
        state, progress = SUNO_STATUS_MAP[raw_status]
    elif "FAILED" in raw_status:
        state, progress = FAILED, 0
    else:
        state, progress = RUNNING, 50

    response = payload.response or {}
    tracks = suno_tracks(response.get("sunoData") or response.get("data") or [])

    error_message = None
    if state == FAILED:
        error_message = payload.error_message or f"Suno generation failed ({raw_status})"

    return ProviderStatus(
        state=state,
        progress=progress,
        raw_status=raw_status,
        tracks=tracks,
        error_message=error_message,
        raw=payload.model_dump(by_alias=True, exclude={"provider"}),
    )


def _mureka_duration(value: Any) -> Optional[float]:
    duration = _as_float(value)
    # Mureka reports milliseconds
    if duration is not None and duration > 3600:
        duration = duration / 1000.0
    return duration


def normalize_mureka(payload: MurekaCompletionPayload) -> ProviderStatus:
    """Map a Mureka song query payload onto the canonical model"""
    raw_status = (payload.status or "pending").lower()
    state, progress = MUREKA_STATUS_MAP.get(raw_status, (RUNNING, 50))

    tracks = []
    for choice in payload.choices or []:
        url = _first(choice, "audio_url", "url")
        if not url:
            continue
        tracks.append(NormalizedTrack(
            audio_url=url,
            title=_first(choice, "title"),
            duration=_mureka_duration(_first(choice, "duration")),
            lyrics=_first(choice, "lyrics") or payload.lyrics,
            image_url=_first(choice, "image_url", "cover_url"),
            provider_track_id=_first(choice, "id") or payload.id,
        ))
    if not tracks:
        for url in payload.audio_urls or []:
            if url:
                tracks.append(NormalizedTrack(audio_url=url, lyrics=payload.lyrics, provider_track_id=payload.id))

    error_message = None
    if state == FAILED:
        error_message = payload.failed_reason or f"Mureka generation {raw_status}"

    return ProviderStatus(
        state=state,
        progress=progress,
        raw_status=raw_status,
        tracks=tracks,
        error_message=error_message,
        raw=payload.model_dump(exclude={"provider"}),
    )


def normalize(payload: CompletionPayload) -> ProviderStatus:
    """Dispatch to the normalizer for the payload's provider"""
    if isinstance(payload, SunoCompletionPayload):
        return normalize_suno(payload)
    if isinstance(payload, MurekaCompletionPayload):
        return normalize_mureka(payload)
    raise TypeError(f"Unsupported completion payload: {type(payload).__name__}")


# Suno callback stages, by callbackType
SUNO_CALLBACK_STAGES = {
    "text": "TEXT_SUCCESS",
    "first": "FIRST_SUCCESS",
    "complete": "SUCCESS",
}


def parse_suno_callback(body: Dict[str, Any]) -> Tuple[Optional[str], Optional[ProviderStatus]]:
    """
    Read a Suno completion callback body
    (`{"code", "msg", "data": {"callbackType", "task_id", "data": [...]}}`).

    Returns the provider task id and the status it reports; a callback with
    a non-200 code is a failed generation.
    """
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        return None, None

    task_id = _first(data, "task_id", "taskId")
    if not task_id:
        return None, None

    code = body.get("code")
    if code != 200:
        return task_id, ProviderStatus(
            state=FAILED,
            raw_status=f"CALLBACK_{code}",
            error_message=body.get("msg") or "Suno generation failed",
            raw=data,
        )

    raw_status = SUNO_CALLBACK_STAGES.get((data.get("callbackType") or "").lower(), "PENDING")
    state, progress = SUNO_STATUS_MAP[raw_status]
    return task_id, ProviderStatus(
        state=state,
        progress=progress,
        raw_status=raw_status,
        tracks=suno_tracks(data.get("data") or []),
        raw=data,
    )
