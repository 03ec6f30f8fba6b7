"""Per-component logger wrapper and timed-operation context manager.

``ComponentLogger`` binds a fixed ``LogComponent`` to the global
``WorkflowLogger`` so that each service can log without repeating its
component.

``TimedOperation`` is an async context manager returned by
``ComponentLogger.timed()`` that logs the elapsed duration and the
success/failure of a block of code.
"""

import time
from typing import Any, Optional

from blogflow.logging.models import LogComponent
from blogflow.logging.workflow_logger import get_logger


class ComponentLogger:
    """Wrapper that binds a fixed ``LogComponent`` to the global logger.

    Each service creates its own ``ComponentLogger`` at ``__init__`` time::

        self.log = ComponentLogger(LogComponent.PUBLISHER)
        await self.log.info("Post published", post_id=post_id)
    """

    def __init__(self, component: LogComponent) -> None:
        self.component = component

    async def debug(self, message: str, **kwargs: Any) -> None:
        """Log at DEBUG level for this component."""
        await get_logger().debug(self.component, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        """Log at INFO level for this component."""
        await get_logger().info(self.component, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        """Log at WARNING level for this component."""
        await get_logger().warning(self.component, message, **kwargs)

    async def error(
        self, message: str, error: Optional[BaseException] = None, **kwargs: Any
    ) -> None:
        """Log at ERROR level for this component."""
        await get_logger().error(self.component, message, error=error, **kwargs)

    def timed(self, message: str, **kwargs: Any) -> "TimedOperation":
        """Return an async context manager that logs the outcome with duration.

        Usage::

            async with self.log.timed("Publishing sweep"):
                report = await self._sweep()
        """
        return TimedOperation(self, message, **kwargs)


class TimedOperation:
    """Async context manager that measures and logs operation duration.

    On successful exit, logs an INFO message with ``duration_ms``.
    On exception, logs an ERROR message with ``duration_ms`` and the error,
    then re-raises the exception (does **not** suppress it).
    """

    def __init__(self, logger: ComponentLogger, message: str, **kwargs: Any) -> None:
        self.logger = logger
        self.message = message
        self.kwargs = kwargs
        self._start: Optional[float] = None

    async def __aenter__(self) -> "TimedOperation":
        self._start = time.perf_counter()
        await self.logger.debug(f"Starting: {self.message}", **self.kwargs)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> None:
        assert self._start is not None
        duration_ms = int((time.perf_counter() - self._start) * 1000)

        if exc_type is not None:
            await self.logger.error(
                f"Failed: {self.message}",
                error=exc_val,
                duration_ms=duration_ms,
                **self.kwargs,
            )
        else:
            await self.logger.info(
                f"Completed: {self.message}",
                duration_ms=duration_ms,
                **self.kwargs,
            )
        # Return None (falsy) so exceptions propagate
