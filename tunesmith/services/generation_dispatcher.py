"""
Generation Dispatcher
Validates, rate limits and submits generation requests, then records the
pending task
"""

import uuid
from typing import Callable, Optional, AsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import DispatchError, RateLimitExceededError, ValidationError
from ..core.logging import generation_logger
from ..core.rate_limiter import RateLimiter
from ..database.models import GenerationTask
from ..database.repositories.generation_repository import GenerationRepository
from ..database.schemas import GenerationCreate
from . import notifications
from .notifications import NotificationHub
from .providers import ProviderRegistry

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class GenerationDispatcher:
    """Entry point for new generations"""

    def __init__(
        self,
        session_factory: SessionFactory,
        providers: ProviderRegistry,
        rate_limiter: RateLimiter,
        notifier: NotificationHub,
        scheduler=None
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.rate_limiter = rate_limiter
        self.notifier = notifier
        self.scheduler = scheduler

    async def dispatch(self, user_id: uuid.UUID, request: GenerationCreate) -> GenerationTask:
        """
        Submit one generation request.

        Raises ValidationError, RateLimitExceededError or DispatchError; in
        each case no task row is written. Exactly one provider call is made
        and it is not retried here.
        """
        prompt = (request.prompt or "").strip()
        if not prompt:
            raise ValidationError("Prompt must not be empty")

        service = request.service
        provider = self.providers.get(service)
        if provider is None:
            raise ValidationError(f"Unknown service: {service}")

        if not provider.is_initialized:
            message = f"{service} is not available right now"
            generation_logger.log_dispatch_error(service, "provider not initialized")
            await self._notify_failure(user_id, service, message)
            raise DispatchError(service, message)

        limit = await self.rate_limiter.check_limit(str(user_id), service)
        if not limit.allowed:
            generation_logger.log_rate_limited(str(user_id), service, limit.retry_after)
            await self.notifier.publish(
                user_id,
                notifications.RATE_LIMITED,
                "Too many requests",
                f"You can start another {service} generation in {limit.retry_after} seconds.",
                level="warning",
                data={"reset_time": limit.reset_time.isoformat(), "retry_after": limit.retry_after}
            )
            raise RateLimitExceededError(service, limit.reset_time, limit.retry_after)

        result = await provider.submit(request.model_copy(update={"prompt": prompt}))
        if result.is_err():
            generation_logger.log_dispatch_error(service, result.error, error_code=result.error_code)
            message = f"Could not start the {service} generation. Please try again."
            await self._notify_failure(user_id, service, message)
            raise DispatchError(service, message, {"reason": result.error_code or "provider_error"})

        external_task_id = result.data
        meta = {
            "request": request.model_dump(exclude={"prompt", "service"}, exclude_none=True),
            f"{service}_task_id": external_task_id,
            "task_id": external_task_id,
        }

        async with self.session_factory() as session:
            created = await GenerationRepository(session).create_task(
                user_id=user_id,
                service=service,
                prompt=prompt,
                external_task_id=external_task_id,
                meta=meta
            )
        task = created.unwrap()

        generation_logger.log_dispatch(str(task.id), service, external_task_id, user_id=str(user_id))
        await self.notifier.publish(
            user_id,
            notifications.DISPATCH_SUCCEEDED,
            "Generation started",
            f"Your {service} track is being generated.",
            task_id=task.id,
            data={"service": service}
        )

        if self.scheduler is not None:
            self.scheduler.track(task)

        return task

    async def _notify_failure(self, user_id: uuid.UUID, service: str, message: str) -> None:
        await self.notifier.publish(
            user_id,
            notifications.DISPATCH_FAILED,
            "Generation failed to start",
            message,
            level="error",
            data={"service": service}
        )
