"""
Sentry integration for the HLS supervisor.

Provides error tracking and tracing with camera context. Every helper is a
no-op until init_sentry() has been called with a DSN.
"""

import functools
import logging
import os
from typing import Any, Callable, Optional

import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

# Global flag to track if Sentry is initialized
_sentry_initialized = False


def init_sentry(
    dsn: Optional[str],
    environment: str = "production",
    traces_sample_rate: float = 0.2,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN
        environment: Environment name (production, staging, etc.)
        traces_sample_rate: Percentage of transactions to trace (0.0 to 1.0)
        release: Version/release identifier

    Returns:
        True if initialized successfully, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry DSN not provided, skipping initialization")
        return False

    if _sentry_initialized:
        logger.debug("Sentry already initialized")
        return True

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release or os.getenv("VERSION", "unknown"),
            integrations=[
                # Breadcrumbs from INFO+, events from ERROR+
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR,
                ),
                AioHttpIntegration(),
            ],
            traces_sample_rate=traces_sample_rate,
            send_default_pii=False,
            attach_stacktrace=True,
        )
        sentry_sdk.set_tag("service", "camhls")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    _sentry_initialized = True
    logger.info(f"Sentry initialized (env={environment}, traces={traces_sample_rate})")
    return True


def set_camera_context(camera_id: str, camera_name: str) -> None:
    """Tag subsequent events with the camera being processed."""
    if not _sentry_initialized:
        return

    sentry_sdk.set_tag("camera_id", camera_id)
    sentry_sdk.set_tag("camera_name", camera_name)
    sentry_sdk.set_context("camera", {
        "id": camera_id,
        "name": camera_name,
    })


def clear_camera_context() -> None:
    """Clear camera context after processing."""
    if not _sentry_initialized:
        return

    scope = sentry_sdk.get_isolation_scope()
    scope.remove_tag("camera_id")
    scope.remove_tag("camera_name")
    scope.remove_context("camera")


def capture_exception(exception: BaseException, **extra_context) -> None:
    """
    Capture an exception with optional extra context.

    Args:
        exception: The exception to capture
        **extra_context: Additional context to attach
    """
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)


def capture_message(message: str, level: str = "info", **extra_context) -> None:
    """
    Capture a message (non-exception event).

    Args:
        message: The message to capture
        level: Log level (debug, info, warning, error, fatal)
        **extra_context: Additional context to attach
    """
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_message(message, level=level)


def traced(op: str = "function", name: Optional[str] = None) -> Callable:
    """
    Decorator to create a Sentry transaction for an async function.

    Example:
        @traced(op="stream", name="ensure_stream")
        async def ensure(self, camera_id: str, base_url: str) -> str:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            if not _sentry_initialized:
                return await func(*args, **kwargs)

            with sentry_sdk.start_transaction(op=op, name=name or func.__name__) as transaction:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    # Errors carrying an HTTP status (e.g. a 404 for an unknown
                    # camera) map to that status; anything else is a failure.
                    status_code = getattr(e, "status_code", None)
                    if isinstance(status_code, int):
                        transaction.set_http_status(status_code)
                    else:
                        transaction.set_status("internal_error")
                    raise
                transaction.set_status("ok")
                return result

        return wrapper
    return decorator


class TracingContext:
    """
    Context manager for manual span creation.

    Example:
        with TracingContext(op="subprocess", description="start_ffmpeg") as span:
            process = subprocess.Popen(...)
            span.set_data("pid", process.pid)
    """

    def __init__(self, op: str, description: str):
        self.op = op
        self.description = description
        self._span = None

    def __enter__(self):
        if not _sentry_initialized:
            return self

        self._span = sentry_sdk.start_span(op=self.op, name=self.description)
        self._span.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._span:
            self._span.__exit__(exc_type, exc_val, exc_tb)
        return False

    def set_data(self, key: str, value: Any) -> None:
        """Set data on the span."""
        if self._span:
            self._span.set_data(key, value)
