# kiosk/routers/sessions.py
"""
Registration wizard API: one session per kiosk check-in.

    POST   /sessions                    {ref} → start at "info"
    GET    /sessions/{id}
    POST   /sessions/{id}/confirm-info  info → photo
    POST   /sessions/{id}/back          photo → info, preview → photo
    POST   /sessions/{id}/photo         {image} photo taken in the browser
    POST   /sessions/{id}/capture       photo from the kiosk webcam
    POST   /sessions/{id}/preview       {style} photo → preview
    POST   /sessions/{id}/confirm       preview → printing
    POST   /sessions/{id}/print         printing → complete (session is then dropped)
    DELETE /sessions/{id}               cancel in-flight work and drop the session

Step failures that the visitor can retry (upload, generation, persistence)
return 200 with the unchanged step and an inline `error`. A second action
sent while one is still running gets 409.
"""

import inspect
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from kiosk.errors import (
    CameraError,
    InvalidImageFormat,
    InvalidTransition,
    SessionBusy,
    SessionCancelled,
    VisitorNotFound,
)
from kiosk.services.avatar_service import AvatarGenerator, get_avatar_generator
from kiosk.services.badge_compositor import BadgeCompositor, get_badge_compositor
from kiosk.services.camera_service import get_camera
from kiosk.services.storage_service import StorageService, get_storage_service
from kiosk.services.visitor_store import VisitorStore, get_visitor_store
from kiosk.services.wizard import (
    RegistrationSession,
    SessionRegistry,
    get_session_registry,
    visitor_snapshot,
)
from kiosk.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


class StartSession(BaseModel):
    ref: Optional[str] = None


class PhotoBody(BaseModel):
    image: Optional[str] = None


class PreviewBody(BaseModel):
    style: Optional[str] = None


def _session(session_id: str, registry: SessionRegistry) -> RegistrationSession:
    try:
        return registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")


async def _run(session: RegistrationSession, action):
    """Run a wizard action, mapping wizard errors to HTTP errors."""
    try:
        result = action()
        if inspect.isawaitable(result):
            await result
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (SessionBusy, SessionCancelled) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidImageFormat as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CameraError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return session.to_dict()


@router.post("/sessions", status_code=201, summary="Start a registration session")
def start_session(body: StartSession,
                  store: VisitorStore = Depends(get_visitor_store),
                  storage: StorageService = Depends(get_storage_service),
                  generator: AvatarGenerator = Depends(get_avatar_generator),
                  compositor: BadgeCompositor = Depends(get_badge_compositor),
                  registry: SessionRegistry = Depends(get_session_registry)):
    if not body.ref:
        raise HTTPException(status_code=400, detail="Reference ID is required")
    try:
        visitor = store.get_by_ref(body.ref)
    except VisitorNotFound:
        raise HTTPException(status_code=404, detail="Visitor not found")

    session = registry.add(RegistrationSession(visitor_snapshot(visitor), storage, generator, compositor))
    logger.info(f"[WIZARD] Session {session.id} started for {body.ref} "
                f"(registered={visitor.registered})")
    return session.to_dict()


@router.get("/sessions/{session_id}", summary="Current wizard state")
def get_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    return _session(session_id, registry).to_dict()


@router.post("/sessions/{session_id}/confirm-info", summary="Visitor confirmed their profile")
async def confirm_info(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    session = _session(session_id, registry)
    return await _run(session, session.confirm_info)


@router.post("/sessions/{session_id}/back", summary="Go back one step")
async def back(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    session = _session(session_id, registry)
    return await _run(session, session.back)


@router.post("/sessions/{session_id}/photo", summary="Submit a photo taken in the browser")
async def submit_photo(session_id: str, body: PhotoBody,
                       registry: SessionRegistry = Depends(get_session_registry)):
    if not body.image:
        raise HTTPException(status_code=400, detail="Image is required")
    session = _session(session_id, registry)
    return await _run(session, lambda: session.set_photo(body.image))


@router.post("/sessions/{session_id}/capture", summary="Take a photo with the kiosk camera")
async def capture(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    session = _session(session_id, registry)
    try:
        camera = get_camera()
    except CameraError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return await _run(session, lambda: session.capture_photo(camera))


@router.post("/sessions/{session_id}/preview", summary="Generate avatar and badge preview")
async def preview(session_id: str, body: PreviewBody,
                  registry: SessionRegistry = Depends(get_session_registry)):
    session = _session(session_id, registry)
    return await _run(session, lambda: session.generate_preview(body.style))


@router.post("/sessions/{session_id}/confirm", summary="Confirm badge and register")
async def confirm(session_id: str, store: VisitorStore = Depends(get_visitor_store),
                  registry: SessionRegistry = Depends(get_session_registry)):
    session = _session(session_id, registry)
    return await _run(session, lambda: session.confirm_badge(store))


@router.post("/sessions/{session_id}/print", summary="Run the printing step to completion")
async def print_badge(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    session = _session(session_id, registry)
    result = await _run(session, session.finish_printing)
    registry.discard(session_id)
    logger.info(f"[WIZARD] Session {session_id} complete for {session.ref}")
    return result


@router.delete("/sessions/{session_id}", summary="Cancel a session")
def cancel_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    session = registry.remove(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "cancelled", "id": session_id}
