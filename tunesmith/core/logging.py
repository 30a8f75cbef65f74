"""
Tunesmith Logging Configuration
Structured logging setup with file rotation and domain loggers
"""

import logging
import logging.handlers
import sys
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from .config import TunesmithSettings, get_settings

# Library loggers that are too chatty at the application level
LIBRARY_LOG_LEVELS: Dict[str, int] = {
    "uvicorn": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "asyncio": logging.WARNING,
}


def _console_handler(colored: bool, json_format: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    if colored:
        handler.setFormatter(logging.Formatter(
            '\033[92m%(asctime)s\033[0m \033[94m%(name)s\033[0m %(levelname)s %(message)s',
            datefmt='%H:%M:%S'
        ))
    else:
        handler.setFormatter(jsonlogger.JsonFormatter(json_format))
    return handler


def _file_handler(settings: TunesmithSettings) -> Optional[logging.Handler]:
    """Rotating JSON log file, or None when the file cannot be opened"""
    try:
        handler = logging.handlers.RotatingFileHandler(
            settings.LOG_FILE_PATH,
            maxBytes=settings.LOG_MAX_SIZE,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
    except OSError as e:
        logging.getLogger("tunesmith").warning(f"Log file unavailable, using console only: {e}")
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(module)s %(lineno)d %(message)s'
    ))
    return handler


def setup_logging(settings: Optional[TunesmithSettings] = None) -> logging.Logger:
    """
    Route stdlib and structlog output to the console and the rotating file.

    Values bound with structlog.contextvars (task id, service) are merged into
    every event emitted while they are bound.
    """
    settings = settings or get_settings()
    development = settings.is_development

    handlers: List[logging.Handler] = [_console_handler(colored=development, json_format=settings.LOG_FORMAT)]
    file_handler = _file_handler(settings)
    if file_handler is not None:
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    for handler in handlers:
        root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer() if development else structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    for name, level in LIBRARY_LOG_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("tunesmith.generation").setLevel(logging.DEBUG)

    logger = logging.getLogger("tunesmith")
    logger.info(f"Logging configured at {settings.LOG_LEVEL} ({'console' if file_handler is None else settings.LOG_FILE_PATH})")
    return logger


class GenerationLogger:
    """Specialized logger for the generation lifecycle"""

    def __init__(self):
        self.logger = structlog.get_logger("tunesmith.generation")

    def log_dispatch(
        self,
        task_id: str,
        service: str,
        external_task_id: str,
        **kwargs: Any
    ) -> None:
        """Log a successful provider dispatch"""
        self.logger.info(
            "Generation dispatched",
            task_id=task_id,
            service=service,
            external_task_id=external_task_id,
            **kwargs
        )

    def log_dispatch_error(self, service: str, error: str, **kwargs: Any) -> None:
        """Log a rejected dispatch"""
        self.logger.error(
            "Generation dispatch failed",
            service=service,
            error=error,
            **kwargs
        )

    def log_rate_limited(self, user_id: str, service: str, retry_after: int) -> None:
        self.logger.warning(
            "Generation rate limited",
            user_id=user_id,
            service=service,
            retry_after=retry_after
        )

    def log_transition(
        self,
        task_id: str,
        from_status: str,
        to_status: str,
        progress: int = None,
        **kwargs: Any
    ) -> None:
        """Log a generation status transition"""
        self.logger.info(
            "Generation status changed",
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
            progress=progress,
            **kwargs
        )

    def log_poll_error(self, task_id: str, error: str, attempt: int) -> None:
        """Log a transient status check failure"""
        self.logger.warning(
            "Status check failed, will retry",
            task_id=task_id,
            error=error,
            attempt=attempt
        )

    def log_timeout(self, task_id: str, elapsed_s: float) -> None:
        self.logger.error(
            "Generation timed out",
            task_id=task_id,
            elapsed_s=elapsed_s
        )


class ProviderLogger:
    """Specialized logger for provider API calls"""

    def __init__(self):
        self.logger = structlog.get_logger("tunesmith.provider")

    def log_request(self, provider: str, operation: str, **kwargs: Any) -> None:
        """Log an outbound provider request"""
        self.logger.debug(
            "Provider request",
            provider=provider,
            operation=operation,
            **kwargs
        )

    def log_response(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float = None,
        **kwargs: Any
    ) -> None:
        """Log a provider response"""
        self.logger.debug(
            "Provider response",
            provider=provider,
            operation=operation,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs
        )

    def log_error(self, provider: str, operation: str, error: str, **kwargs: Any) -> None:
        """Log a provider error"""
        self.logger.error(
            "Provider request failed",
            provider=provider,
            operation=operation,
            error=error,
            **kwargs
        )


class StorageLogger:
    """Specialized logger for audio localization and storage sweeps"""

    def __init__(self):
        self.logger = structlog.get_logger("tunesmith.storage")

    def log_download_start(self, track_id: str, source_url: str) -> None:
        self.logger.info(
            "Audio download started",
            track_id=track_id,
            source_url=source_url
        )

    def log_download_complete(
        self,
        track_id: str,
        storage_path: str,
        file_size: int,
        duration_ms: float
    ) -> None:
        """Log a completed audio download"""
        self.logger.info(
            "Audio stored",
            track_id=track_id,
            storage_path=storage_path,
            file_size=file_size,
            duration_ms=duration_ms
        )

    def log_download_error(self, track_id: str, error: str, **kwargs: Any) -> None:
        """Log a failed audio download"""
        self.logger.warning(
            "Audio download failed, keeping remote URL",
            track_id=track_id,
            error=error,
            **kwargs
        )

    def log_sweep(self, total: int, successes: int, failures: int) -> None:
        """Log a storage sync sweep summary"""
        self.logger.info(
            "Storage sync completed",
            total=total,
            successes=successes,
            failures=failures
        )


class WebSocketLogger:
    """Specialized logger for notification WebSocket connections"""

    def __init__(self):
        self.logger = structlog.get_logger("tunesmith.websocket")

    def log_connection(self, connection_id: str, user_id: str) -> None:
        """Log WebSocket connection"""
        self.logger.info(
            "WebSocket connection established",
            connection_id=connection_id,
            user_id=user_id
        )

    def log_disconnection(self, connection_id: str, reason: str = None) -> None:
        """Log WebSocket disconnection"""
        self.logger.info(
            "WebSocket connection closed",
            connection_id=connection_id,
            reason=reason
        )

    def log_notification(self, user_id: str, kind: str, recipients: int) -> None:
        self.logger.debug(
            "Notification published",
            user_id=user_id,
            kind=kind,
            recipients=recipients
        )


# Create global logger instances
generation_logger = GenerationLogger()
provider_logger = ProviderLogger()
storage_logger = StorageLogger()
websocket_logger = WebSocketLogger()

# Export for convenience
__all__ = [
    "setup_logging",
    "GenerationLogger",
    "ProviderLogger",
    "StorageLogger",
    "WebSocketLogger",
    "generation_logger",
    "provider_logger",
    "storage_logger",
    "websocket_logger"
]
