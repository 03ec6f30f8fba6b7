"""
Collaborative session routes.

- POST /sessions/start                 - Start or resume editing a post
- POST /sessions/{session_id}/join     - Join an active session
- POST /sessions/{session_id}/heartbeat - Keep the edit lock alive
- POST /sessions/{session_id}/leave    - Stop editing
- GET  /sessions/{post_id}/active      - Live sessions of a post
"""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from blogflow.api.deps import CurrentUser, get_current_user, get_services, require_author
from blogflow.api.envelope import ok
from blogflow.services import Services

router = APIRouter(prefix="/sessions", tags=["Sessions"])


class StartSessionRequest(BaseModel):
    post_id: str = Field(..., min_length=1)


@router.post("/start", status_code=status.HTTP_201_CREATED, summary="Start editing a post")
async def start_session(
    request: StartSessionRequest,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    session = await services.sessions.start_session(request.post_id, user.id)
    return ok(session.to_dict())


@router.post("/{session_id}/join", summary="Join an active session")
async def join_session(
    session_id: str,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    session = await services.sessions.join_session(session_id, user.id)
    return ok(session.to_dict())


@router.post("/{session_id}/heartbeat", summary="Refresh the edit lock")
async def heartbeat(
    session_id: str,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    session = await services.sessions.heartbeat(session_id, user.id)
    return ok(session.to_dict())


@router.post("/{session_id}/leave", summary="Stop editing")
async def leave_session(
    session_id: str,
    user: CurrentUser = Depends(require_author),
    services: Services = Depends(get_services),
):
    session = await services.sessions.leave_session(session_id, user.id)
    return ok(session.to_dict())


@router.get("/{post_id}/active", summary="Live sessions of a post")
async def get_active_sessions(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    sessions = await services.sessions.get_active_sessions(post_id)
    return ok([s.to_dict() for s in sessions])
