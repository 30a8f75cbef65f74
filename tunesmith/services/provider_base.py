"""
Music Provider Base
Shared httpx client lifecycle and request handling for AI music providers
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..core.logging import provider_logger
from ..core.result import Result
from ..database.schemas import GenerationCreate
from .payloads import ProviderStatus


class StemResult(BaseModel):
    """Outcome of a stem separation request or status check"""
    state: str  # pending, completed, failed
    external_task_id: Optional[str] = None
    stems: List[Dict[str, Any]] = Field(default_factory=list)
    error_message: Optional[str] = None


class MusicProvider(ABC):
    """Base class for provider API clients"""

    name = "provider"
    DEFAULT_BASE_URL = ""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        default_model: Optional[str] = None,
        callback_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.default_model = default_model
        self.callback_url = callback_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def initialize(self) -> Result[None]:
        """Create the API client"""
        if not self.api_key:
            return Result.err(f"{self.name} API key is not configured", error_code="not_configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "User-Agent": "Tunesmith/1.0"
            }
        )
        return Result.ok(None)

    async def cleanup(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any
    ) -> Result[Dict[str, Any]]:
        """Send one request and decode the JSON body"""
        if not self._client:
            return Result.err(f"{self.name} client not initialized", error_code="not_configured")

        provider_logger.log_request(self.name, operation, path=path)
        start_time = time.perf_counter()

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            provider_logger.log_error(self.name, operation, f"Request error: {e}")
            return Result.err(f"{self.name} API request failed: {e}", error_code="network_error")

        duration_ms = (time.perf_counter() - start_time) * 1000
        provider_logger.log_response(self.name, operation, response.status_code, duration_ms)

        if response.status_code >= 400:
            message = f"{self.name} API error: {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = None
            if isinstance(body, dict):
                detail = body.get("msg") or body.get("message") or body.get("error")
            if not detail and response.text:
                detail = response.text[:200]
            if detail:
                message += f" - {detail}"
            provider_logger.log_error(self.name, operation, message)
            return Result.err(message, error_code="http_error", details={"status_code": response.status_code})

        try:
            data = response.json()
        except ValueError:
            return Result.err(f"{self.name} API returned invalid JSON", error_code="invalid_response")

        if not isinstance(data, dict):
            return Result.err(f"{self.name} API returned an unexpected body", error_code="invalid_response")

        return Result.ok(data)

    @abstractmethod
    async def submit(self, request: GenerationCreate) -> Result[str]:
        """Submit a generation; returns the provider task id"""
        pass

    @abstractmethod
    async def get_status(self, external_task_id: str) -> Result[ProviderStatus]:
        pass

    @abstractmethod
    async def request_stems(
        self,
        audio_url: Optional[str],
        external_task_id: Optional[str],
        provider_track_id: Optional[str],
        mode: str
    ) -> Result[StemResult]:
        pass

    @abstractmethod
    async def get_stem_status(self, external_task_id: str) -> Result[StemResult]:
        pass
