"""Central workflow logger with file and Supabase outputs.

Provides the ``WorkflowLogger`` class that dispatches structured log
entries to local JSON files (via ``aiofiles``) and, when a database
client is attached, mirrors them to the ``workflow_logs`` table.  A
lightweight in-memory ring buffer allows fast ``get_recent()`` queries
without hitting the database.

Global helpers:
    - ``init_logger()``  -- create and register a singleton ``WorkflowLogger``
    - ``get_logger()``   -- retrieve the singleton (raises if not initialised)
"""

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set

import aiofiles

from blogflow.logging.models import LogComponent, LogEntry, LogLevel
from blogflow.utils import utc_now

# Stdlib logger used to report failures of the workflow log outputs.
_fallback = logging.getLogger(__name__)


class WorkflowLogger:
    """Structured log for the content workflow.

    Parameters:
        log_dir: Directory for log files (created if missing).
        db: Optional database client exposing ``save_workflow_log()``.
        min_level: Minimum level for database writes.
        max_recent: Size of the in-memory ring buffer.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        db: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.db = db
        self.min_level = min_level

        # Log file paths
        self._main_log = self.log_dir / "workflow.log"
        self._error_log = self.log_dir / "errors.log"

        self._recent_logs: Deque[LogEntry] = deque(maxlen=max_recent)

        # Track pending async tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
        post_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> LogEntry:
        """Log a structured message.

        The file write is awaited; the database write is scheduled as a
        tracked task when a client is attached and the level is at or
        above ``min_level``.
        """
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            post_id=post_id,
            user_id=user_id,
            data=data or {},
            duration_ms=duration_ms,
        )

        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_message = str(error)

        self._recent_logs.append(entry)

        await self._write_to_file(entry)

        if self.db is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_db(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        return entry

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at DEBUG level."""
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at INFO level."""
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at WARNING level."""
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        """Log at ERROR level."""
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        post_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Return recent logs from the in-memory ring buffer.

        Filters are applied in-memory (fast, no I/O).
        """
        logs = list(self._recent_logs)

        if level is not None:
            logs = [entry for entry in logs if entry.level == level]
        if component is not None:
            logs = [entry for entry in logs if entry.component == component]
        if post_id is not None:
            logs = [entry for entry in logs if entry.post_id == post_id]

        return logs[-limit:]

    # ------------------------------------------------------------------
    # Flush (call before shutdown)
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for all pending database log writes."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """Append the entry as a JSON line.

        - ``workflow.log`` -- all entries
        - ``errors.log``   -- ERROR and CRITICAL only
        """
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._main_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_db(self, entry: LogEntry) -> None:
        """Write the entry to the ``workflow_logs`` table."""
        try:
            await self.db.save_workflow_log(entry.to_dict())
        except Exception as exc:
            # The workflow log must never break the operation it records.
            _fallback.warning("[LOGGING] Failed to write workflow log to Supabase: %s", exc)


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[WorkflowLogger] = None


def init_logger(
    log_dir: str = "logs",
    db: Any = None,
    min_level: LogLevel = LogLevel.INFO,
) -> WorkflowLogger:
    """Initialise and register the global ``WorkflowLogger`` singleton.

    Returns the newly created logger instance.
    """
    global _logger
    _logger = WorkflowLogger(log_dir=log_dir, db=db, min_level=min_level)
    return _logger


def get_logger() -> WorkflowLogger:
    """Retrieve the global ``WorkflowLogger`` singleton.

    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger
