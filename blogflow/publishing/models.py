"""
Publishing data models: QueueStatus, PublishingOptions, PublishingQueueItem,
PublishingResult, SweepReport.

Defines the core data structures used by the publishing subsystem:
- ``QueueStatus``: Lifecycle status of a queue item.
- ``PublishingOptions``: Side effects to run when a post goes live.
- ``PublishingQueueItem``: A post scheduled for future publication.
- ``PublishingResult``: Outcome of one publish, including warnings.
- ``SweepReport``: Summary of one pass over the due queue items.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from blogflow.config import SUPPORTED_SOCIAL_PLATFORMS
from blogflow.exceptions import ValidationError
from blogflow.utils import parse_timestamp, utc_now


# =============================================================================
# QUEUE STATUS ENUM
# =============================================================================


class QueueStatus(Enum):
    """Lifecycle status of a publishing queue item.

    Transitions:
        PENDING -> PROCESSING -> COMPLETED
                              -> FAILED
                              -> PENDING (transient failure, attempts left)
        PENDING -> (deleted on cancel)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (never re-processed)."""
        return self in {QueueStatus.COMPLETED, QueueStatus.FAILED}


# =============================================================================
# PUBLISHING OPTIONS
# =============================================================================


@dataclass
class PublishingOptions:
    """Side effects applied when a post is published.

    Attributes:
        notify_subscribers: Send the new-post notification.
        share_on_social: Generate share URLs for ``social_platforms``.
        social_platforms: Platforms to share on; ``None`` means the
            configured defaults.
        seo_optimize: Fill in a meta description when the post has none.
        generate_sitemap: Regenerate and upload ``sitemap.xml``.
    """

    notify_subscribers: bool = False
    share_on_social: bool = False
    social_platforms: Optional[List[str]] = None
    seo_optimize: bool = False
    generate_sitemap: bool = False

    def __post_init__(self) -> None:
        if self.social_platforms is not None:
            unknown = set(self.social_platforms) - set(SUPPORTED_SOCIAL_PLATFORMS)
            if unknown:
                raise ValidationError(
                    f"Unknown social platforms {sorted(unknown)}. "
                    f"Valid platforms: {list(SUPPORTED_SOCIAL_PLATFORMS)}"
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notify_subscribers": self.notify_subscribers,
            "share_on_social": self.share_on_social,
            "social_platforms": self.social_platforms,
            "seo_optimize": self.seo_optimize,
            "generate_sitemap": self.generate_sitemap,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PublishingOptions":
        data = data or {}
        platforms = data.get("social_platforms")
        return cls(
            notify_subscribers=bool(data.get("notify_subscribers", False)),
            share_on_social=bool(data.get("share_on_social", False)),
            social_platforms=list(platforms) if platforms is not None else None,
            seo_optimize=bool(data.get("seo_optimize", False)),
            generate_sitemap=bool(data.get("generate_sitemap", False)),
        )


# =============================================================================
# PUBLISHING QUEUE ITEM
# =============================================================================


@dataclass
class PublishingQueueItem:
    """A post scheduled for publication.

    Attributes:
        id: Unique identifier (UUID).
        post_id: Post to publish.
        scheduled_for: When the post should go live (timezone-aware UTC).
        status: Current lifecycle status.
        attempts: Failed transient attempts so far.
        max_attempts: Attempts allowed before the item is failed.
        options: Publishing options to apply.
        claimed_at: When a sweep moved the item to ``PROCESSING``.
        last_error: Error from the most recent failed attempt.
        created_at: When the item was enqueued.
        updated_at: Last status change.
    """

    id: str
    post_id: str
    scheduled_for: datetime
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    options: PublishingOptions = field(default_factory=PublishingOptions)
    claimed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``publishing_queue`` row."""
        return {
            "id": self.id,
            "post_id": self.post_id,
            "scheduled_for": self.scheduled_for.isoformat(),
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "options": self.options.to_dict(),
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.to_row()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PublishingQueueItem":
        """Build a queue item from a ``publishing_queue`` row."""
        return cls(
            id=row["id"],
            post_id=row["post_id"],
            scheduled_for=parse_timestamp(row["scheduled_for"]),
            status=QueueStatus(row.get("status", "pending")),
            attempts=int(row.get("attempts") or 0),
            max_attempts=int(row.get("max_attempts") or 3),
            options=PublishingOptions.from_dict(row.get("options")),
            claimed_at=parse_timestamp(row.get("claimed_at")),
            last_error=row.get("last_error"),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")) or utc_now(),
        )


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class PublishingResult:
    """Outcome of a successful publish.

    Side-effect failures do not fail the publish; they are collected in
    ``errors`` as warnings.
    """

    post_id: str
    published_url: str
    published_at: datetime
    version_id: Optional[str] = None
    social_shares: Dict[str, str] = field(default_factory=dict)
    meta_description: Optional[str] = None
    sitemap_url: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "post_id": self.post_id,
            "published_url": self.published_url,
            "published_at": self.published_at.isoformat(),
            "version_id": self.version_id,
            "social_shares": self.social_shares,
            "meta_description": self.meta_description,
            "sitemap_url": self.sitemap_url,
            "errors": self.errors,
        }


@dataclass
class SweepReport:
    """Summary of one ``process_scheduled_posts`` pass.

    Attributes:
        due: Due items found.
        published: Queue item IDs completed by this sweep.
        requeued: Queue item IDs returned to ``pending`` after a
            transient failure.
        failed: Queue item IDs moved to ``failed``.
        skipped: Queue item IDs claimed by another sweep first, or whose
            claim could not be written.
        stranded: Queue item IDs whose final status could not be
            written; they stay ``processing`` until stuck recovery.
    """

    due: int = 0
    published: List[str] = field(default_factory=list)
    requeued: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    stranded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "due": self.due,
            "published": self.published,
            "requeued": self.requeued,
            "failed": self.failed,
            "skipped": self.skipped,
            "stranded": self.stranded,
        }


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "QueueStatus",
    "PublishingOptions",
    "PublishingQueueItem",
    "PublishingResult",
    "SweepReport",
]
