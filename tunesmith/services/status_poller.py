"""
Status Poller
Per-task polling state machines and the scheduler that drives them
"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, AsyncContextManager

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.logging import generation_logger
from ..core.timeutils import seconds_since, utcnow
from ..database.models import (
    GenerationTask,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
)
from ..database.repositories.generation_repository import GenerationRepository
from ..database.schemas import PollSweepSummary
from . import notifications
from .notifications import NotificationHub
from .payloads import ProviderStatus
from .persistence_bridge import PersistenceBridge
from .provider_base import MusicProvider
from .providers import ProviderRegistry

logger = structlog.get_logger("tunesmith.poller")

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class PollState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


TERMINAL_POLL_STATES = (
    PollState.COMPLETED,
    PollState.FAILED,
    PollState.TIMEOUT,
    PollState.CANCELLED,
)

# failure_reason written for each terminal failure state
FAILURE_REASONS = {
    PollState.FAILED: "provider",
    PollState.TIMEOUT: "timeout",
    PollState.CANCELLED: "cancelled",
}


class TaskPoller:
    """
    Tracks one outstanding generation task.

    Each call to `tick()` makes at most one provider status request and
    moves the task forward. Once a terminal state is reached further ticks
    do nothing.
    """

    def __init__(
        self,
        task: GenerationTask,
        provider: MusicProvider,
        session_factory: SessionFactory,
        bridge: PersistenceBridge,
        notifier: NotificationHub,
        timeout: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
        on_completed: Optional[Callable[["TaskPoller"], Awaitable[None]]] = None
    ):
        self.task_id = task.id
        self.user_id = task.user_id
        self.service = task.service
        self.external_task_id = task.external_task_id
        self.created_at = task.created_at
        self.progress = task.progress or 0

        self.provider = provider
        self.session_factory = session_factory
        self.bridge = bridge
        self.notifier = notifier
        self.timeout = timeout
        self.clock = clock
        self.on_completed = on_completed

        self.state = PollState.RUNNING if task.status == STATUS_RUNNING else PollState.PENDING
        self.attempts = 0
        self.errors = 0
        self.last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_POLL_STATES

    def elapsed(self) -> float:
        return seconds_since(self.created_at, self.clock())

    def remaining(self) -> float:
        return self.timeout - self.elapsed()

    async def tick(self) -> PollState:
        if self.is_terminal:
            return self.state

        elapsed = self.elapsed()
        if elapsed >= self.timeout:
            generation_logger.log_timeout(str(self.task_id), elapsed)
            await self._finish_failed(
                PollState.TIMEOUT,
                f"Generation timed out after {int(self.timeout)} seconds without a result"
            )
            return self.state

        self.attempts += 1
        result = await self.provider.get_status(self.external_task_id)
        if result.is_err():
            self.errors += 1
            self.last_error = result.error
            generation_logger.log_poll_error(str(self.task_id), result.error, self.attempts)
            return self.state

        return await self.apply(result.data)

    async def apply(self, status: ProviderStatus) -> PollState:
        """Move the task according to one normalized provider status"""
        if self.is_terminal:
            return self.state

        if status.state == STATUS_COMPLETED:
            await self._complete(status)
        elif status.state == STATUS_FAILED:
            await self._finish_failed(
                PollState.FAILED,
                status.error_message or f"{self.service} generation failed"
            )
        else:
            await self._advance(status)
        return self.state

    async def cancel(self) -> bool:
        """Stop tracking and mark the task cancelled; False if it had already finished"""
        if self.is_terminal:
            return False
        return await self._finish_failed(PollState.CANCELLED, "Generation cancelled by user")

    async def _advance(self, status: ProviderStatus) -> None:
        target = STATUS_RUNNING if status.state == STATUS_RUNNING else STATUS_PENDING
        progress = max(self.progress, status.progress)

        async with self.session_factory() as session:
            moved = await GenerationRepository(session).transition(
                self.task_id,
                target,
                progress=progress
            )

        if moved.is_err():
            self.errors += 1
            self.last_error = moved.error
            generation_logger.log_poll_error(str(self.task_id), moved.error, self.attempts)
            return
        if moved.data is None:
            await self._sync_from_store()
            return

        previous_state = self.state
        previous_progress = self.progress
        self.state = PollState(target)
        self.progress = progress

        if previous_state != self.state or previous_progress != progress:
            generation_logger.log_transition(
                str(self.task_id), previous_state.value, target, progress, raw_status=status.raw_status
            )
            await self.notifier.publish(
                self.user_id,
                notifications.PROGRESS,
                "Generating",
                f"Your {self.service} track is {progress}% done.",
                task_id=self.task_id,
                data={"progress": progress, "status": target}
            )

    async def _complete(self, status: ProviderStatus) -> None:
        saved = await self.bridge.on_generation_complete(self.task_id, status)
        if saved.is_err():
            if saved.error_code in ("terminal", "not_found"):
                await self._sync_from_store()
                return
            # Provider finished but the result could not be stored yet
            self.errors += 1
            self.last_error = saved.error
            generation_logger.log_poll_error(str(self.task_id), saved.error, self.attempts)
            return

        tracks = saved.data
        self.state = PollState.COMPLETED
        self.progress = 100
        await self.notifier.publish(
            self.user_id,
            notifications.GENERATION_COMPLETED,
            "Your track is ready",
            f"Your {self.service} generation finished with {len(tracks)} take(s).",
            task_id=self.task_id,
            data={"track_ids": [str(track.id) for track in tracks]}
        )

        if self.on_completed is not None:
            try:
                await self.on_completed(self)
            except Exception as e:
                logger.warning("Post-completion hook failed", task_id=str(self.task_id), error=str(e))

    async def _finish_failed(self, state: PollState, message: str) -> bool:
        async with self.session_factory() as session:
            moved = await GenerationRepository(session).transition(
                self.task_id,
                STATUS_FAILED,
                error_message=message,
                failure_reason=FAILURE_REASONS[state]
            )

        if moved.is_err():
            self.errors += 1
            self.last_error = moved.error
            generation_logger.log_poll_error(str(self.task_id), moved.error, self.attempts)
            return False
        if moved.data is None:
            await self._sync_from_store()
            return False

        previous_state = self.state
        self.state = state
        generation_logger.log_transition(
            str(self.task_id), previous_state.value, STATUS_FAILED, failure_reason=FAILURE_REASONS[state]
        )

        if state == PollState.TIMEOUT:
            await self.notifier.publish(
                self.user_id,
                notifications.GENERATION_TIMEOUT,
                "Generation timed out",
                f"Your {self.service} track took too long and was stopped.",
                level="error",
                task_id=self.task_id
            )
        elif state == PollState.FAILED:
            await self.notifier.publish(
                self.user_id,
                notifications.GENERATION_FAILED,
                "Generation failed",
                message,
                level="error",
                task_id=self.task_id
            )
        return True

    async def _sync_from_store(self) -> None:
        """Adopt the stored status after another path finished the task"""
        async with self.session_factory() as session:
            task = (await GenerationRepository(session).get_task(self.task_id)).unwrap_or(None)

        if task is None:
            self.state = PollState.CANCELLED
        elif task.status == STATUS_COMPLETED:
            self.state = PollState.COMPLETED
            self.progress = 100
        elif task.status == STATUS_FAILED:
            reason = task.failure_reason or "provider"
            self.state = {
                "timeout": PollState.TIMEOUT,
                "cancelled": PollState.CANCELLED,
            }.get(reason, PollState.FAILED)


class PollScheduler:
    """Owns one polling loop per outstanding generation task"""

    def __init__(
        self,
        session_factory: SessionFactory,
        providers: ProviderRegistry,
        bridge: PersistenceBridge,
        notifier: NotificationHub,
        initial_delay: float = 2.0,
        interval: float = 5.0,
        timeout: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
        on_completed: Optional[Callable[[TaskPoller], Awaitable[None]]] = None
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.bridge = bridge
        self.notifier = notifier
        self.initial_delay = initial_delay
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self.on_completed = on_completed

        self._loops: Dict[uuid.UUID, asyncio.Task] = {}
        self._pollers: Dict[uuid.UUID, TaskPoller] = {}

    @classmethod
    def from_settings(cls, settings, session_factory, providers, bridge, notifier, **kwargs) -> "PollScheduler":
        polling = settings.get_polling_config()
        return cls(
            session_factory,
            providers,
            bridge,
            notifier,
            initial_delay=polling["initial_delay"],
            interval=polling["interval"],
            timeout=polling["timeout"],
            **kwargs
        )

    def create_poller(self, task: GenerationTask) -> Optional[TaskPoller]:
        provider = self.providers.get(task.service)
        if provider is None or not task.external_task_id:
            logger.warning("Task cannot be polled", task_id=str(task.id), service=task.service)
            return None
        return TaskPoller(
            task,
            provider,
            self.session_factory,
            self.bridge,
            self.notifier,
            timeout=self.timeout,
            clock=self.clock,
            on_completed=self.on_completed
        )

    def active_task_ids(self) -> List[uuid.UUID]:
        return [task_id for task_id, loop in self._loops.items() if not loop.done()]

    def is_tracking(self, task_id: uuid.UUID) -> bool:
        loop = self._loops.get(task_id)
        return loop is not None and not loop.done()

    def track(self, task: GenerationTask, initial_delay: Optional[float] = None) -> Optional[TaskPoller]:
        """Start the polling loop for a task; a task already tracked keeps its loop"""
        if self.is_tracking(task.id):
            return self._pollers.get(task.id)

        poller = self.create_poller(task)
        if poller is None:
            return None

        delay = self.initial_delay if initial_delay is None else initial_delay
        self._pollers[task.id] = poller
        self._loops[task.id] = asyncio.create_task(self._run(poller, delay))
        logger.info("Polling started", task_id=str(task.id), service=task.service)
        return poller

    async def _run(self, poller: TaskPoller, initial_delay: float) -> None:
        # Scoped to this loop's asyncio task
        structlog.contextvars.bind_contextvars(
            generation_task_id=str(poller.task_id),
            service=poller.service
        )
        try:
            await asyncio.sleep(initial_delay)
            while True:
                try:
                    await poller.tick()
                except Exception as e:
                    # Unexpected errors count like a failed status check
                    poller.errors += 1
                    poller.last_error = str(e)
                    logger.error("Poll tick failed", task_id=str(poller.task_id), error=str(e), exc_info=True)

                if poller.is_terminal:
                    break
                # Never sleep past the deadline so the timeout fires on time
                await asyncio.sleep(max(0.0, min(self.interval, poller.remaining())))
        finally:
            if self._pollers.get(poller.task_id) is poller:
                self._pollers.pop(poller.task_id, None)
                self._loops.pop(poller.task_id, None)

        logger.info(
            "Polling stopped",
            task_id=str(poller.task_id),
            state=poller.state.value,
            attempts=poller.attempts
        )

    async def _stop_loop(self, task_id: uuid.UUID) -> Optional[TaskPoller]:
        poller = self._pollers.pop(task_id, None)
        loop = self._loops.pop(task_id, None)
        if loop is not None and not loop.done():
            loop.cancel()
            try:
                await loop
            except asyncio.CancelledError:
                pass
        return poller

    async def handle_status(self, task: GenerationTask, status: ProviderStatus) -> Optional[PollState]:
        """
        Apply a status pushed by the provider (a completion callback).

        A live loop for the task is stopped first so the push and the loop
        never process the same task at once; the loop is restarted when the
        task is still outstanding afterwards.
        """
        poller = await self._stop_loop(task.id) or self.create_poller(task)
        if poller is None:
            return None

        state = await poller.apply(status)
        if not poller.is_terminal:
            self.track(task, initial_delay=self.interval)
        return state

    async def cancel(self, task_id: uuid.UUID) -> bool:
        """
        Stop polling a task and mark it failed as cancelled.

        Returns False when the task had already reached a terminal state.
        """
        poller = await self._stop_loop(task_id)
        if poller is not None:
            return await poller.cancel()

        async with self.session_factory() as session:
            moved = await GenerationRepository(session).transition(
                task_id,
                STATUS_FAILED,
                error_message="Generation cancelled by user",
                failure_reason=FAILURE_REASONS[PollState.CANCELLED]
            )
        return moved.is_ok() and moved.data is not None

    async def shutdown(self) -> None:
        """Stop every loop without touching task status"""
        task_ids = list(self._loops)
        for task_id in task_ids:
            await self._stop_loop(task_id)
        if task_ids:
            logger.info("Poll scheduler stopped", loops=len(task_ids))

    async def _outstanding(self, user_id: Optional[uuid.UUID] = None) -> List[GenerationTask]:
        async with self.session_factory() as session:
            result = await GenerationRepository(session).list_outstanding(user_id)
        return result.unwrap()

    async def _expire(self, task: GenerationTask) -> bool:
        """Fail a task that ran out of polling time while no process watched it"""
        poller = self.create_poller(task)
        try:
            if poller is not None:
                return await poller.tick() == PollState.TIMEOUT

            async with self.session_factory() as session:
                moved = await GenerationRepository(session).transition(
                    task.id,
                    STATUS_FAILED,
                    error_message="Generation timed out before it could be polled",
                    failure_reason=FAILURE_REASONS[PollState.TIMEOUT]
                )
            if moved.is_err():
                logger.error("Expiring task failed", task_id=str(task.id), error=moved.error)
                return False
            return moved.data is not None
        except Exception as e:
            logger.error("Expiring task failed", task_id=str(task.id), error=str(e))
            return False

    async def resume_outstanding(self) -> Dict[str, int]:
        """
        Pick up tasks left unfinished by a previous process. Tasks older than
        the polling budget are expired right away instead of resumed.
        """
        resumed = expired = 0
        for task in await self._outstanding():
            if seconds_since(task.created_at, self.clock()) >= self.timeout:
                if await self._expire(task):
                    expired += 1
                continue
            if self.track(task) is not None:
                resumed += 1

        logger.info("Outstanding generations resumed", resumed=resumed, expired=expired)
        return {"resumed": resumed, "expired": expired}

    async def sweep(self, user_id: Optional[uuid.UUID] = None) -> PollSweepSummary:
        """Run one status check for every outstanding task without a live loop"""
        summary = PollSweepSummary()
        for task in await self._outstanding(user_id):
            if self.is_tracking(task.id):
                summary.still_running += 1
                continue

            poller = self.create_poller(task)
            if poller is None:
                continue

            summary.checked += 1
            try:
                state = await poller.tick()
            except Exception as e:
                logger.error("Sweep tick failed", task_id=str(task.id), error=str(e))
                summary.still_running += 1
                continue

            if state == PollState.COMPLETED:
                summary.completed += 1
            elif state == PollState.TIMEOUT:
                summary.timed_out += 1
            elif state in (PollState.FAILED, PollState.CANCELLED):
                summary.failed += 1
            else:
                summary.still_running += 1

        logger.info(
            "Poll sweep finished",
            checked=summary.checked,
            completed=summary.completed,
            failed=summary.failed,
            timed_out=summary.timed_out
        )
        return summary
