"""
Publishing routes.

- POST   /publish/{post_id}            - Publish now
- POST   /publish/{post_id}/schedule   - Schedule for later
- GET    /publish/queue                - Publishing queue (?status=)
- DELETE /publish/queue/{queue_id}     - Cancel a pending item
"""

from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from blogflow.api.deps import CurrentUser, get_current_user, get_services, require_author
from blogflow.api.envelope import ok
from blogflow.publishing.models import PublishingOptions, QueueStatus
from blogflow.services import Services

router = APIRouter(prefix="/publish", tags=["Publishing"])


class PublishOptionsRequest(BaseModel):
    notify_subscribers: bool = False
    share_on_social: bool = False
    social_platforms: Optional[List[Literal["twitter", "linkedin", "facebook"]]] = None
    seo_optimize: bool = False
    generate_sitemap: bool = False

    def to_options(self) -> PublishingOptions:
        return PublishingOptions(
            notify_subscribers=self.notify_subscribers,
            share_on_social=self.share_on_social,
            social_platforms=list(self.social_platforms)
            if self.social_platforms is not None
            else None,
            seo_optimize=self.seo_optimize,
            generate_sitemap=self.generate_sitemap,
        )


class ScheduleRequest(PublishOptionsRequest):
    scheduled_for: datetime


@router.get("/queue", summary="Publishing queue")
async def get_publishing_queue(
    status_filter: Optional[Literal["pending", "processing", "completed", "failed"]] = Query(
        None, alias="status"
    ),
    limit: int = Query(50, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    items = await services.scheduler.get_publishing_queue(
        status=QueueStatus(status_filter) if status_filter else None,
        limit=limit,
    )
    return ok([item.to_dict() for item in items])


@router.delete("/queue/{queue_id}", summary="Cancel a scheduled publication")
async def cancel_scheduled_post(
    queue_id: str,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    await services.scheduler.cancel_scheduled_post(queue_id)
    return ok({"id": queue_id, "cancelled": True})


@router.post("/{post_id}", summary="Publish a post now")
async def publish_post(
    post_id: str,
    request: Optional[PublishOptionsRequest] = None,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    options = (request or PublishOptionsRequest()).to_options()
    result = await services.publisher.publish_post(post_id, options)
    return ok(result.to_dict(), errors=result.errors)


@router.post(
    "/{post_id}/schedule",
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a post for publication",
)
async def schedule_post(
    post_id: str,
    request: ScheduleRequest,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    item = await services.scheduler.schedule_post(
        post_id, request.scheduled_for, request.to_options()
    )
    return ok(item.to_dict())
