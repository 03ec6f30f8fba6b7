"""Publishing: immediate publish, scheduling queue and side effects."""
from blogflow.publishing.models import (
    PublishingOptions,
    PublishingQueueItem,
    PublishingResult,
    QueueStatus,
    SweepReport,
)
from blogflow.publishing.publisher import Publisher
from blogflow.publishing.scheduler import PublishingScheduler

__all__ = [
    "PublishingOptions", "PublishingQueueItem", "PublishingResult",
    "QueueStatus", "SweepReport", "Publisher", "PublishingScheduler",
]
