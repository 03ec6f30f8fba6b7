"""
Publishing Scheduler: queue posts for future publication and sweep them.

Queue items move ``pending -> processing -> completed | failed``.  Every
status change is a compare-and-swap on the ``status`` column, so two
sweeps racing over the same due item publish it exactly once: the sweep
whose ``pending -> processing`` swap loses simply skips the item.

Sweeps are triggered externally (cron hitting ``POST /sweeps/publishing``
or ``python run.py sweep publishing``); there is no in-process loop.

Failure handling per claimed item:

- ``StorageUnavailableError``: ``attempts += 1``; back to ``pending``
  while ``attempts < max_attempts``, otherwise ``failed``.
- Validation failures (``IncompletePostError``, ``PostNotFoundError``):
  ``failed`` immediately, never retried.
- A status write that fails after the publish leaves the item in
  ``processing``; the sweep moves on and stuck recovery later marks it
  ``completed`` when its post went live after the claim.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from blogflow.config import Settings, get_settings
from blogflow.database import SupabaseDB
from blogflow.exceptions import (
    AlreadyProcessedError,
    IncompletePostError,
    InvalidScheduleError,
    PostNotFoundError,
    QueueItemNotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from blogflow.logging import ComponentLogger, LogComponent
from blogflow.publishing.models import (
    PublishingOptions,
    PublishingQueueItem,
    QueueStatus,
    SweepReport,
)
from blogflow.publishing.publisher import Publisher, track_publishing_event
from blogflow.utils import ensure_utc, generate_id, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

QUEUE_TABLE = "publishing_queue"


class PublishingScheduler:
    """Schedules posts and processes the publishing queue.

    Args:
        db: Database client.
        publisher: Publisher used by the sweep.
        settings: Runtime settings (``queue_max_attempts``,
            ``stuck_timeout_minutes``).

    Usage::

        scheduler = PublishingScheduler(db, Publisher(db))
        item = await scheduler.schedule_post(post_id, utc_now() + timedelta(hours=1))
        report = await scheduler.process_scheduled_posts()
    """

    def __init__(
        self,
        db: SupabaseDB,
        publisher: Optional[Publisher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.publisher = publisher or Publisher(db, settings=self.settings)
        self.log = ComponentLogger(LogComponent.SCHEDULER)

    # ================================================================
    # QUEUE MANAGEMENT
    # ================================================================

    async def schedule_post(
        self,
        post_id: str,
        scheduled_for: datetime,
        options: Optional[PublishingOptions] = None,
    ) -> PublishingQueueItem:
        """Enqueue a post for publication at *scheduled_for*.

        Args:
            post_id: Post to publish.
            scheduled_for: Publication time; naive datetimes are UTC.
            options: Side effects to run when the item is published.

        Returns:
            The new ``pending`` queue item with ``attempts = 0``.

        Raises:
            InvalidScheduleError: If *scheduled_for* is not in the future.
            PostNotFoundError: If the post does not exist.
        """
        scheduled_for = ensure_utc(scheduled_for)
        now = utc_now()
        if scheduled_for <= now:
            raise InvalidScheduleError(
                f"Scheduled time {scheduled_for.isoformat()} is not in the future"
            )
        if await self.db.get_post(post_id) is None:
            raise PostNotFoundError(f"Post {post_id} not found")

        item = PublishingQueueItem(
            id=generate_id(),
            post_id=post_id,
            scheduled_for=scheduled_for,
            status=QueueStatus.PENDING,
            attempts=0,
            max_attempts=self.settings.queue_max_attempts,
            options=options or PublishingOptions(),
            created_at=now,
            updated_at=now,
        )
        created = PublishingQueueItem.from_row(await self.db.insert_queue_item(item.to_row()))

        logger.info(
            "[SCHEDULER] Post %s scheduled for %s (queue=%s)",
            post_id, created.scheduled_for.isoformat(), created.id,
        )
        await track_publishing_event(
            self.db, post_id, "scheduled", scheduled_for=created.scheduled_for.isoformat()
        )
        return created

    async def cancel_scheduled_post(self, queue_id: str) -> None:
        """Remove a ``pending`` queue item.

        Raises:
            QueueItemNotFoundError: If the item does not exist.
            AlreadyProcessedError: If the item is no longer ``pending``.
        """
        if await self.db.delete_queue_item_if_status(queue_id, QueueStatus.PENDING.value):
            logger.info("[SCHEDULER] Queue item %s cancelled", queue_id)
            return

        row = await self.db.get_queue_item(queue_id)
        if row is None:
            raise QueueItemNotFoundError(f"Queue item {queue_id} not found")
        raise AlreadyProcessedError(
            f"Queue item {queue_id} is already {row['status']}"
        )

    async def get_publishing_queue(
        self,
        status: Optional[QueueStatus] = None,
        limit: int = 50,
    ) -> List[PublishingQueueItem]:
        """Return queue items ordered by ``scheduled_for``.

        Args:
            status: Optional status filter.  When ``None``, returns items
                in all statuses.
            limit: Maximum number of items (default 50).
        """
        rows = await self.db.list_queue_items(
            status=status.value if status else None, limit=limit
        )
        logger.debug(
            "[SCHEDULER] Retrieved %d queue items (filter=%s)",
            len(rows), status.value if status else "all",
        )
        return [PublishingQueueItem.from_row(row) for row in rows]

    # ================================================================
    # SWEEP
    # ================================================================

    async def process_scheduled_posts(self) -> SweepReport:
        """Publish every due ``pending`` item this sweep manages to claim."""
        report = SweepReport()

        async with self.log.timed("Publishing sweep"):
            now = utc_now()
            rows = await self.db.get_due_queue_items(now)
            report.due = len(rows)
            if rows:
                logger.info("[SCHEDULER] Found %d item(s) due for publishing", len(rows))

            for row in rows:
                try:
                    claimed = await self.db.compare_and_swap(
                        QUEUE_TABLE,
                        row["id"],
                        "status",
                        QueueStatus.PENDING.value,
                        {
                            "status": QueueStatus.PROCESSING.value,
                            "claimed_at": now.isoformat(),
                            "updated_at": now.isoformat(),
                        },
                    )
                except StorageUnavailableError as exc:
                    logger.error(
                        "[SCHEDULER] Could not claim queue item %s, leaving it pending: %s",
                        row["id"], exc,
                    )
                    report.skipped.append(row["id"])
                    continue
                if claimed is None:
                    logger.debug("[SCHEDULER] Queue item %s already claimed, skipping", row["id"])
                    report.skipped.append(row["id"])
                    continue

                await self._process_claimed(PublishingQueueItem.from_row(claimed), report)

        await self.log.info("Publishing sweep finished", data=report.to_dict())
        return report

    async def _process_claimed(self, item: PublishingQueueItem, report: SweepReport) -> None:
        try:
            await self.publisher.publish_post(item.post_id, item.options)
        except (IncompletePostError, PostNotFoundError, ValidationError) as exc:
            logger.warning(
                "[SCHEDULER] Queue item %s rejected (post %s): %s",
                item.id, item.post_id, exc,
            )
            await self._finish(item, QueueStatus.FAILED, item.attempts, str(exc), report)
            report.failed.append(item.id)
            await track_publishing_event(self.db, item.post_id, "failed", error=str(exc))
        except StorageUnavailableError as exc:
            attempts = item.attempts + 1
            status = (
                QueueStatus.PENDING if attempts < item.max_attempts else QueueStatus.FAILED
            )
            logger.warning(
                "[SCHEDULER] Queue item %s attempt %d/%d failed: %s",
                item.id, attempts, item.max_attempts, exc,
            )
            await self._finish(item, status, attempts, str(exc), report)
            if status is QueueStatus.PENDING:
                report.requeued.append(item.id)
            else:
                report.failed.append(item.id)
                await track_publishing_event(self.db, item.post_id, "failed", error=str(exc))
        except Exception as exc:
            logger.error(
                "[SCHEDULER] Failed to publish queue item %s: %s",
                item.id, exc, exc_info=True,
            )
            await self._finish(item, QueueStatus.FAILED, item.attempts + 1, str(exc), report)
            report.failed.append(item.id)
        else:
            await self._finish(item, QueueStatus.COMPLETED, item.attempts, None, report)
            report.published.append(item.id)

    async def _finish(
        self,
        item: PublishingQueueItem,
        status: QueueStatus,
        attempts: int,
        error: Optional[str],
        report: SweepReport,
    ) -> None:
        """Move a claimed item out of ``processing``.

        A storage failure here leaves the item in ``processing`` and
        records it in ``report.stranded``; ``recover_stuck_items`` settles
        it once the stuck timeout passes.
        """
        updates = {
            "status": status.value,
            "attempts": min(attempts, item.max_attempts),
            "last_error": error,
            "updated_at": utc_now().isoformat(),
        }
        if status is QueueStatus.PENDING:
            updates["claimed_at"] = None

        try:
            moved = await self.db.compare_and_swap(
                QUEUE_TABLE, item.id, "status", QueueStatus.PROCESSING.value, updates
            )
        except StorageUnavailableError as exc:
            logger.error(
                "[SCHEDULER] Could not mark queue item %s %s, left in processing: %s",
                item.id, status.value, exc,
            )
            report.stranded.append(item.id)
            return
        if moved is None:
            logger.warning(
                "[SCHEDULER] Queue item %s left processing before it could be marked %s",
                item.id, status.value,
            )
        else:
            logger.info("[SCHEDULER] Queue item %s -> %s", item.id, status.value)

    # ================================================================
    # RECOVERY
    # ================================================================

    async def recover_stuck_items(self) -> int:
        """Release items stuck in ``processing`` past the stuck timeout.

        A stuck item whose post went live after the item was claimed is
        ``completed``: the publish succeeded and only the status write was
        lost.  Any other stuck item counts as one failed attempt: it
        returns to ``pending`` while attempts remain, otherwise it is
        ``failed``.

        Returns:
            Number of items this call recovered.
        """
        timeout = self.settings.stuck_timeout_minutes
        cutoff = utc_now() - timedelta(minutes=timeout)
        rows = await self.db.get_stuck_queue_items(cutoff)

        recovered = 0
        for row in rows:
            item = PublishingQueueItem.from_row(row)
            if await self._published_since_claim(item):
                moved = await self.db.compare_and_swap(
                    QUEUE_TABLE,
                    item.id,
                    "status",
                    QueueStatus.PROCESSING.value,
                    {
                        "status": QueueStatus.COMPLETED.value,
                        "last_error": None,
                        "updated_at": utc_now().isoformat(),
                    },
                )
                if moved is not None:
                    recovered += 1
                    logger.warning(
                        "[SCHEDULER] Stuck queue item %s already published, marked completed",
                        item.id,
                    )
                continue

            attempts = item.attempts + 1
            status = QueueStatus.PENDING if attempts < item.max_attempts else QueueStatus.FAILED
            moved = await self.db.compare_and_swap(
                QUEUE_TABLE,
                item.id,
                "status",
                QueueStatus.PROCESSING.value,
                {
                    "status": status.value,
                    "attempts": attempts,
                    "claimed_at": None,
                    "last_error": f"Processing stuck for >{timeout} minutes",
                    "updated_at": utc_now().isoformat(),
                },
            )
            if moved is not None:
                recovered += 1
                logger.warning(
                    "[SCHEDULER] Recovered stuck queue item %s -> %s", item.id, status.value
                )

        if recovered:
            logger.info("[SCHEDULER] Recovery complete: %d stuck item(s) released", recovered)
        return recovered

    async def _published_since_claim(self, item: PublishingQueueItem) -> bool:
        post = await self.db.get_post(item.post_id)
        if post is None or post.get("status") != "published":
            return False
        published_at = parse_timestamp(post.get("published_at"))
        if published_at is None or item.claimed_at is None:
            return False
        return published_at >= item.claimed_at


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = ["PublishingScheduler"]
