"""
Suno Provider for Tunesmith
Song generation, record-info polling and vocal/stem separation via the Suno API
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.logging import provider_logger
from ..core.result import Result
from ..database.schemas import GenerationCreate
from .payloads import ProviderStatus, SunoCompletionPayload, normalize_suno
from .provider_base import MusicProvider, StemResult


class SunoProvider(MusicProvider):
    """Suno API provider"""

    name = "suno"
    DEFAULT_BASE_URL = "https://api.sunoapi.org"
    MAX_PROMPT_LENGTH = 3000
    MAX_STYLE_LENGTH = 200
    MAX_TITLE_LENGTH = 80

    # Stem fields of a vocal-removal record, by stem type
    STEM_FIELDS = {
        "originUrl": "original",
        "vocalUrl": "vocals",
        "instrumentalUrl": "instrumental",
        "backingVocalsUrl": "backing_vocals",
        "drumsUrl": "drums",
        "bassUrl": "bass",
        "guitarUrl": "guitar",
        "keyboardUrl": "keyboard",
        "percussionUrl": "percussion",
        "stringsUrl": "strings",
        "synthUrl": "synth",
        "fxUrl": "fx",
        "brassUrl": "brass",
        "woodwindsUrl": "woodwinds",
    }
    STEM_FAILURE_FLAGS = ("CREATE_TASK_FAILED", "GENERATE_AUDIO_FAILED", "CALLBACK_EXCEPTION")

    @staticmethod
    def map_model(model: Optional[str]) -> str:
        """Translate `chirp-v3-5` style names into API model ids (`V3_5`)"""
        if not model:
            return "V3_5"
        if model.lower().startswith("chirp-v"):
            return "V" + model[len("chirp-v"):].replace("-", "_").upper()
        return model

    def _prepare_request(self, request: GenerationCreate) -> Dict[str, Any]:
        """Prepare Suno generation request body"""
        prompt = request.prompt.strip()
        custom_mode = bool(request.lyrics or request.style or request.title)

        body: Dict[str, Any] = {
            "prompt": (request.lyrics or prompt)[:self.MAX_PROMPT_LENGTH] if custom_mode else prompt[:400],
            "customMode": custom_mode,
            "instrumental": request.instrumental,
            "model": self.map_model(request.model or self.default_model),
        }

        if custom_mode:
            body["style"] = (request.style or prompt)[:self.MAX_STYLE_LENGTH]
            body["title"] = (request.title or prompt)[:self.MAX_TITLE_LENGTH]

        if self.callback_url:
            body["callBackUrl"] = self.callback_url

        return body

    async def submit(self, request: GenerationCreate) -> Result[str]:
        """Submit a generation; returns the Suno task id"""
        result = await self._request(
            "POST",
            "/api/v1/generate",
            "generate",
            json=self._prepare_request(request)
        )
        if result.is_err():
            return result.propagate()

        body = result.data
        if body.get("code") != 200:
            return Result.err(
                f"Suno API error: {body.get('msg') or 'Unknown error'}",
                error_code="provider_rejected"
            )

        task_id = (body.get("data") or {}).get("taskId")
        if not task_id:
            return Result.err("Suno API response is missing taskId", error_code="invalid_response")

        return Result.ok(task_id)

    async def get_status(self, external_task_id: str) -> Result[ProviderStatus]:
        """Fetch a generation record and map it to the canonical state"""
        result = await self._request(
            "GET",
            "/api/v1/generate/record-info",
            "record-info",
            params={"taskId": external_task_id}
        )
        if result.is_err():
            return result.propagate()

        body = result.data
        if body.get("code") != 200:
            return Result.err(
                f"Suno API error: {body.get('msg') or 'Unknown error'}",
                error_code="provider_rejected"
            )

        try:
            payload = SunoCompletionPayload.model_validate(body.get("data") or {})
        except PydanticValidationError as e:
            provider_logger.log_error(self.name, "record-info", str(e), task_id=external_task_id)
            return Result.err("Suno record-info payload could not be parsed", error_code="invalid_response")

        return Result.ok(normalize_suno(payload))

    async def request_stems(
        self,
        audio_url: Optional[str],
        external_task_id: Optional[str],
        provider_track_id: Optional[str],
        mode: str
    ) -> Result[StemResult]:
        """Start vocal removal (`simple`) or a full stem split (`detailed`)"""
        if not external_task_id or not provider_track_id:
            return Result.err(
                "Suno stem separation needs the generation task id and Suno audio id",
                error_code="invalid_request"
            )

        body = {
            "taskId": external_task_id,
            "audioId": provider_track_id,
            "type": "split_stem" if mode == "detailed" else "separate_vocal",
        }
        if self.callback_url:
            body["callBackUrl"] = self.callback_url

        result = await self._request("POST", "/api/v1/vocal-removal/generate", "vocal-removal", json=body)
        if result.is_err():
            return result.propagate()

        response = result.data
        stem_task_id = (response.get("data") or {}).get("taskId")
        if response.get("code") != 200 or not stem_task_id:
            return Result.err(
                f"Suno stem separation rejected: {response.get('msg') or 'missing taskId'}",
                error_code="provider_rejected"
            )

        return Result.ok(StemResult(state="pending", external_task_id=stem_task_id))

    async def get_stem_status(self, external_task_id: str) -> Result[StemResult]:
        result = await self._request(
            "GET",
            "/api/v1/vocal-removal/record-info",
            "vocal-removal-info",
            params={"taskId": external_task_id}
        )
        if result.is_err():
            return result.propagate()

        data = result.data.get("data") or {}
        flag = (data.get("successFlag") or "PENDING").upper()

        if flag in self.STEM_FAILURE_FLAGS:
            return Result.ok(StemResult(
                state="failed",
                external_task_id=external_task_id,
                error_message=data.get("errorMessage") or f"Suno stem separation failed ({flag})"
            ))

        if flag != "SUCCESS":
            return Result.ok(StemResult(state="pending", external_task_id=external_task_id))

        info = data.get("response") or {}
        stems = [
            {"stem_type": stem_type, "stem_url": info[field]}
            for field, stem_type in self.STEM_FIELDS.items()
            if info.get(field)
        ]
        return Result.ok(StemResult(state="completed", external_task_id=external_task_id, stems=stems))
