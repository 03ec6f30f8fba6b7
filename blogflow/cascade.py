"""Post deletion cascade.

Deleting a post keeps its version history for audit (flagged
``post_deleted``) and removes everything that only makes sense while
the post exists: collaborative sessions and pending queue items.
Completed and failed queue items stay as a publishing record.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from blogflow.database import SupabaseDB
from blogflow.exceptions import PostNotFoundError
from blogflow.logging import ComponentLogger, LogComponent

logger = logging.getLogger(__name__)

_log = ComponentLogger(LogComponent.CASCADE)


@dataclass
class CascadeReport:
    post_id: str
    versions_flagged: int = 0
    sessions_deleted: int = 0
    queue_items_deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def cascade_post_deletion(db: SupabaseDB, post_id: str) -> CascadeReport:
    """Delete a post and cascade to its dependent rows.

    Dependents are handled before the post row so that a failure part
    way through leaves the post in place and the call can be repeated.

    Raises:
        PostNotFoundError: If the post does not exist.
    """
    if await db.get_post(post_id) is None:
        raise PostNotFoundError(f"Post {post_id} not found")

    report = CascadeReport(post_id=post_id)
    report.versions_flagged = await db.flag_versions_post_deleted(post_id)
    report.sessions_deleted = await db.delete_sessions_for_post(post_id)
    report.queue_items_deleted = await db.delete_pending_queue_items_for_post(post_id)
    await db.delete_post(post_id)

    logger.info(
        "[CASCADE] Post %s deleted (versions flagged=%d, sessions=%d, queue items=%d)",
        post_id, report.versions_flagged, report.sessions_deleted, report.queue_items_deleted,
    )
    await _log.info("Post deleted", post_id=post_id, data=report.to_dict())
    return report


__all__ = ["CascadeReport", "cascade_post_deletion"]
