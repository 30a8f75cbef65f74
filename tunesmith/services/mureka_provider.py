"""
Mureka Provider for Tunesmith
Song generation, task queries and stem archives via the Mureka API
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.logging import provider_logger
from ..core.result import Result
from ..database.schemas import GenerationCreate
from .payloads import MurekaCompletionPayload, ProviderStatus, normalize_mureka
from .provider_base import MusicProvider, StemResult


class MurekaProvider(MusicProvider):
    """Mureka API provider"""

    name = "mureka"
    DEFAULT_BASE_URL = "https://api.mureka.ai"

    MODEL_MAPPING = {
        "auto": "auto",
        "v6": "mureka-6",
        "v7": "mureka-7",
        "o1": "mureka-o1",
    }

    @classmethod
    def map_model(cls, model: Optional[str]) -> str:
        if not model:
            return "auto"
        return cls.MODEL_MAPPING.get(model.lower(), model)

    def _prepare_request(self, request: GenerationCreate) -> Dict[str, Any]:
        """Prepare Mureka generation request body"""
        style_parts = [part for part in (request.style, request.prompt.strip()) if part]
        if request.instrumental:
            style_parts.append("instrumental")

        return {
            "lyrics": request.lyrics or "",
            "model": self.map_model(request.model or self.default_model),
            "prompt": ", ".join(style_parts)[:1000],
        }

    async def submit(self, request: GenerationCreate) -> Result[str]:
        """Submit a generation; returns the Mureka task id"""
        result = await self._request(
            "POST",
            "/v1/song/generate",
            "generate",
            json=self._prepare_request(request)
        )
        if result.is_err():
            return result.propagate()

        body = result.data
        task_id = body.get("id") or body.get("task_id")
        if not task_id:
            return Result.err(
                f"Mureka API response is missing the task id: {body.get('error') or 'no id'}",
                error_code="invalid_response"
            )
        return Result.ok(task_id)

    async def get_status(self, external_task_id: str) -> Result[ProviderStatus]:
        """Query a song task and map it to the canonical state"""
        result = await self._request("GET", f"/v1/song/query/{external_task_id}", "query")
        if result.is_err():
            return result.propagate()

        try:
            payload = MurekaCompletionPayload.model_validate(result.data)
        except PydanticValidationError as e:
            provider_logger.log_error(self.name, "query", str(e), task_id=external_task_id)
            return Result.err("Mureka query payload could not be parsed", error_code="invalid_response")

        return Result.ok(normalize_mureka(payload))

    async def request_stems(
        self,
        audio_url: Optional[str],
        external_task_id: Optional[str],
        provider_track_id: Optional[str],
        mode: str
    ) -> Result[StemResult]:
        """Mureka returns a zip archive of all stems synchronously"""
        if not audio_url:
            return Result.err("Mureka stem separation needs an audio URL", error_code="invalid_request")

        result = await self._request("POST", "/v1/song/stem", "stem", json={"url": audio_url})
        if result.is_err():
            return result.propagate()

        zip_url = result.data.get("zip_url")
        if not zip_url:
            return Result.err("Mureka stem response is missing zip_url", error_code="invalid_response")

        return Result.ok(StemResult(
            state="completed",
            stems=[{
                "stem_type": "archive",
                "stem_name": "All stems (zip)",
                "stem_url": zip_url,
                "meta": {"expires_at": result.data.get("expires_at")},
            }]
        ))

    async def get_stem_status(self, external_task_id: str) -> Result[StemResult]:
        return Result.err("Mureka stem separation has no status endpoint", error_code="unsupported")
