"""
Tunesmith API Dependencies
Service wiring and per-request dependencies for the route modules
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Header, HTTPException, Request

from ..core.config import TunesmithSettings
from ..core.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
    build_rate_limits,
)
from ..services.generation_dispatcher import GenerationDispatcher, SessionFactory
from ..services.notifications import NotificationHub
from ..services.persistence_bridge import PersistenceBridge
from ..services.providers import ProviderRegistry
from ..services.status_poller import PollScheduler, TaskPoller
from ..services.stem_service import StemService
from ..services.storage import ObjectStorage, build_storage
from ..services.variant_grouper import VariantGrouper


@dataclass
class ServiceContainer:
    """Everything the routes need, built once per application"""
    settings: TunesmithSettings
    session_factory: SessionFactory
    providers: ProviderRegistry
    rate_limiter: RateLimiter
    notifier: NotificationHub
    storage: ObjectStorage
    bridge: PersistenceBridge
    scheduler: PollScheduler
    dispatcher: GenerationDispatcher
    grouper: VariantGrouper
    stems: StemService


def build_rate_limiter(settings: TunesmithSettings, redis_client: Optional[redis.Redis] = None) -> RateLimiter:
    limits = build_rate_limits(settings.get_rate_limit_config())
    if settings.RATE_LIMIT_BACKEND == "redis" and redis_client is not None:
        return RedisRateLimiter(redis_client, limits)
    return InMemoryRateLimiter(limits)


def build_services(
    settings: TunesmithSettings,
    session_factory: SessionFactory,
    redis_client: Optional[redis.Redis] = None,
    providers: Optional[ProviderRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    background_downloads: bool = True
) -> ServiceContainer:
    """Assemble the service graph from settings"""
    providers = providers or ProviderRegistry.from_settings(settings)
    notifier = NotificationHub(history_size=settings.NOTIFICATION_HISTORY_SIZE)
    storage = build_storage(settings)
    bridge = PersistenceBridge(
        session_factory,
        storage,
        http_client=http_client,
        download_timeout=settings.DOWNLOAD_TIMEOUT,
        max_file_size=settings.MAX_AUDIO_FILE_SIZE,
        background_downloads=background_downloads
    )
    grouper = VariantGrouper(session_factory)

    async def group_finished_task(poller: TaskPoller) -> None:
        await grouper.group_tracks(poller.user_id, poller.external_task_id)

    scheduler = PollScheduler.from_settings(
        settings,
        session_factory,
        providers,
        bridge,
        notifier,
        on_completed=group_finished_task
    )
    dispatcher = GenerationDispatcher(
        session_factory,
        providers,
        build_rate_limiter(settings, redis_client),
        notifier,
        scheduler=scheduler
    )

    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        providers=providers,
        rate_limiter=dispatcher.rate_limiter,
        notifier=notifier,
        storage=storage,
        bridge=bridge,
        scheduler=scheduler,
        dispatcher=dispatcher,
        grouper=grouper,
        stems=StemService(session_factory, providers)
    )


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


async def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> uuid.UUID:
    """Caller identity from the X-User-Id header"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID")
