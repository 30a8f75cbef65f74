"""
Provider Registry
Builds and owns the configured music provider clients
"""

from typing import Dict, List, Optional

import structlog

from ..core.config import TunesmithSettings
from .mureka_provider import MurekaProvider
from .provider_base import MusicProvider
from .suno_provider import SunoProvider

logger = structlog.get_logger("tunesmith.provider")


class ProviderRegistry:
    """Service name -> provider client"""

    def __init__(self, providers: Dict[str, MusicProvider]):
        self._providers = dict(providers)

    @classmethod
    def from_settings(cls, settings: TunesmithSettings) -> "ProviderRegistry":
        suno = settings.get_provider_config("suno")
        mureka = settings.get_provider_config("mureka")
        return cls({
            "suno": SunoProvider(
                api_key=suno["api_key"],
                base_url=suno["base_url"],
                timeout=suno["timeout"],
                default_model=suno["default_model"],
                callback_url=suno["callback_url"],
            ),
            "mureka": MurekaProvider(
                api_key=mureka["api_key"],
                base_url=mureka["base_url"],
                timeout=mureka["timeout"],
                default_model=mureka["default_model"],
            ),
        })

    @property
    def services(self) -> List[str]:
        return list(self._providers)

    def get(self, service: str) -> Optional[MusicProvider]:
        return self._providers.get(service)

    async def initialize(self) -> None:
        """Initialize every provider; unconfigured ones stay unavailable"""
        for service, provider in self._providers.items():
            result = await provider.initialize()
            if result.is_err():
                logger.warning("Provider unavailable", service=service, error=result.error)
            else:
                logger.info("Provider initialized", service=service)

    async def cleanup(self) -> None:
        for provider in self._providers.values():
            await provider.cleanup()
