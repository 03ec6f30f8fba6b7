"""
Operator routes.

- DELETE /posts/{post_id}        - Delete a post (admin; versions kept for audit)
- POST   /sweeps/publishing      - Recover stuck items, then publish due items
- POST   /sweeps/sessions        - Purge expired sessions

Sweep routes are called by cron with the ``X-Cron-Secret`` header.
"""

from fastapi import APIRouter, Depends

from blogflow.api.deps import CurrentUser, get_services, require_admin, verify_cron_secret
from blogflow.api.envelope import ok
from blogflow.cascade import cascade_post_deletion
from blogflow.services import Services

router = APIRouter(tags=["Admin"])


@router.delete("/posts/{post_id}", summary="Delete a post")
async def delete_post(
    post_id: str,
    user: CurrentUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    report = await cascade_post_deletion(services.db, post_id)
    return ok(report.to_dict())


@router.post(
    "/sweeps/publishing",
    dependencies=[Depends(verify_cron_secret)],
    summary="Run the publishing sweep",
)
async def sweep_publishing(services: Services = Depends(get_services)):
    recovered = await services.scheduler.recover_stuck_items()
    report = await services.scheduler.process_scheduled_posts()
    return ok({"recovered": recovered, **report.to_dict()})


@router.post(
    "/sweeps/sessions",
    dependencies=[Depends(verify_cron_secret)],
    summary="Purge expired sessions",
)
async def sweep_sessions(services: Services = Depends(get_services)):
    removed = await services.sessions.cleanup_expired()
    return ok({"removed": removed})
