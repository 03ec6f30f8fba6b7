"""
Version routes.

- POST /versions                         - Save an edit as a new version
- GET  /versions/{post_id}/latest        - Latest version
- GET  /versions/{post_id}/history       - Versions, newest first
- GET  /versions/{post_id}/published     - Currently published version
- GET  /versions/{post_id}/diff          - Compare two versions (?from=&to=)
- POST /versions/{post_id}/rollback      - Restore an earlier version
- POST /versions/{post_id}/merge         - Merge a draft onto the latest version
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from blogflow.api.deps import CurrentUser, get_current_user, get_services, require_author
from blogflow.api.envelope import ok
from blogflow.exceptions import VersionNotFoundError
from blogflow.services import Services

router = APIRouter(prefix="/versions", tags=["Versions"])


# ============================================================
# Request Models
# ============================================================


class VersionFields(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    tags: Optional[List[str]] = None

    def fields(self) -> Dict[str, Any]:
        return {
            name: value
            for name, value in self.model_dump(
                include={"title", "content", "excerpt", "tags"}
            ).items()
            if value is not None
        }


class CreateVersionRequest(VersionFields):
    """An edit to save."""

    post_id: str = Field(..., min_length=1)
    base_version_id: Optional[str] = None
    strategy: Optional[Literal["local", "remote", "manual"]] = None
    manual_choices: Optional[Dict[str, Any]] = None


class RollbackRequest(BaseModel):
    version_id: str = Field(..., min_length=1)


class MergeRequest(VersionFields):
    """A draft to merge onto the latest version."""

    base_version_id: str = Field(..., min_length=1)
    strategy: Literal["local", "remote", "manual"]
    manual_choices: Optional[Dict[str, Any]] = None


# ============================================================
# Routes
# ============================================================


@router.post("", status_code=status.HTTP_201_CREATED, summary="Save an edit")
async def create_version(
    request: CreateVersionRequest,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    version = await services.coordinator.save_edit(
        request.post_id,
        request.fields(),
        user.id,
        base_version_id=request.base_version_id,
        strategy=request.strategy,
        manual_choices=request.manual_choices,
    )
    return ok(version.to_dict())


@router.get("/{post_id}/latest", summary="Latest version of a post")
async def get_latest_version(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    version = await services.version_store.get_latest_version(post_id)
    if version is None:
        raise VersionNotFoundError(f"Post {post_id} has no versions")
    return ok(version.to_dict())


@router.get("/{post_id}/history", summary="Version history, newest first")
async def get_version_history(
    post_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    versions = await services.version_store.get_version_history(post_id, limit=limit)
    return ok([v.to_dict() for v in versions])


@router.get("/{post_id}/published", summary="Currently published version")
async def get_published_version(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    version = await services.version_store.get_published_version(post_id)
    if version is None:
        raise VersionNotFoundError(f"Post {post_id} has no published version")
    return ok(version.to_dict())


@router.get("/{post_id}/diff", summary="Compare two versions")
async def diff_versions(
    post_id: str,
    from_version: str = Query(..., alias="from", min_length=1),
    to_version: str = Query(..., alias="to", min_length=1),
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    diff = await services.version_store.compare_versions(
        from_version, to_version, post_id=post_id
    )
    return ok(diff.to_dict())


@router.post(
    "/{post_id}/rollback",
    status_code=status.HTTP_201_CREATED,
    summary="Restore an earlier version",
)
async def rollback_version(
    post_id: str,
    request: RollbackRequest,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    version = await services.version_store.rollback_to_version(
        post_id, request.version_id, user.id
    )
    return ok(version.to_dict())


@router.post(
    "/{post_id}/merge",
    status_code=status.HTTP_201_CREATED,
    summary="Merge a draft onto the latest version",
)
async def merge_version(
    post_id: str,
    request: MergeRequest,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    version = await services.resolver.commit(
        post_id,
        request.fields(),
        request.base_version_id,
        user.id,
        request.strategy,
        manual_choices=request.manual_choices,
    )
    return ok(version.to_dict())
