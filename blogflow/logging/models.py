"""Workflow logging data models: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Log levels with numeric values for severity comparison.

    Uses integer values so that severity comparison works correctly.
    String comparison would fail (e.g., "debug" > "critical" lexicographically).
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        """Get lowercase name for display/serialization."""
        return self.name.lower()

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        """Resolve a level from its case-insensitive name (``"info"``)."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(
                f"Unknown log level '{name}'. Valid levels: "
                f"{[level.name_str for level in cls]}"
            ) from None


class LogComponent(Enum):
    """All workflow components that can produce logs."""

    # Versioning
    VERSION_STORE = "version_store"
    CONFLICT_RESOLVER = "conflict_resolver"
    EDIT_COORDINATOR = "edit_coordinator"

    # Collaboration
    SESSIONS = "sessions"

    # Publishing
    SCHEDULER = "scheduler"
    PUBLISHER = "publisher"

    # Infrastructure
    STARTUP = "startup"
    CASCADE = "cascade"


@dataclass
class LogEntry:
    """Structured log entry.

    Represents a single log event with context, optional error details,
    and performance timing. Supports serialization to JSON, dict, and
    human-readable text formats.
    """

    # Required fields
    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    # Context
    post_id: Optional[str] = None
    user_id: Optional[str] = None

    # Additional data
    data: Dict[str, Any] = field(default_factory=dict)

    # Error details
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    # Performance
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for Supabase insertion."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "post_id": self.post_id,
            "user_id": self.user_id,
            "data": self.data,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """Serialize to JSON string for file logging."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Human-readable single-line format for console output."""
        time_str = self.timestamp.strftime("%H:%M:%S")
        msg = f"[{self.level.name}] [{time_str}] [{self.component.value}] {self.message}"
        if self.duration_ms is not None:
            msg += f" ({self.duration_ms}ms)"
        return msg
