"""Collaborative editing session model."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from blogflow.utils import parse_timestamp, utc_now


@dataclass
class CollaborativeSession:
    """A group of users editing one post under a time-bounded lock.

    Attributes:
        id: Unique identifier (UUID).
        post_id: Post being edited.
        participants: Every user who has joined the session.
        active_editors: Participants currently editing (subset of
            ``participants``).
        last_activity: Last join/heartbeat time (timezone-aware UTC).
        lock_expiry: ``last_activity`` plus the session TTL.  The session
            is expired once this is in the past.
    """

    id: str
    post_id: str
    participants: List[str] = field(default_factory=list)
    active_editors: List[str] = field(default_factory=list)
    last_activity: datetime = field(default_factory=utc_now)
    lock_expiry: datetime = field(default_factory=utc_now)

    @classmethod
    def new(cls, session_id: str, post_id: str, user_id: str,
            ttl: timedelta, now: Optional[datetime] = None) -> "CollaborativeSession":
        now = now or utc_now()
        return cls(
            id=session_id,
            post_id=post_id,
            participants=[user_id],
            active_editors=[user_id],
            last_activity=now,
            lock_expiry=now + ttl,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.lock_expiry <= (now or utc_now())

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "participants": list(self.participants),
            "active_editors": list(self.active_editors),
            "last_activity": self.last_activity.isoformat(),
            "lock_expiry": self.lock_expiry.isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.to_row()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CollaborativeSession":
        return cls(
            id=row["id"],
            post_id=row["post_id"],
            participants=list(row.get("participants") or []),
            active_editors=list(row.get("active_editors") or []),
            last_activity=parse_timestamp(row.get("last_activity")) or utc_now(),
            lock_expiry=parse_timestamp(row.get("lock_expiry")) or utc_now(),
        )


__all__ = ["CollaborativeSession"]
