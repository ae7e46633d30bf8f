# kiosk/routers/users.py
"""
Visitor record endpoints used by the kiosk front end.
POST /users/create               - create a visitor (ref supplied by caller)
GET  /users/get-by-ref           - fetch by ref
GET  /users/get-by-event         - all visitors of an event, newest update first
PUT  /users/update-registration  - mark registered + store asset URLs
PUT  /users/update-qr-url        - store the QR image URL
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from kiosk.errors import DuplicateRefError, MissingFieldError, StoreError, VisitorNotFound
from kiosk.schemas.visitor import QrUrlUpdate, RegistrationUpdate, VisitorCreate, VisitorOut
from kiosk.services.visitor_store import VisitorStore, get_visitor_store
from kiosk.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/users/create", status_code=201, summary="Create a visitor")
def create_user(body: VisitorCreate, store: VisitorStore = Depends(get_visitor_store)):
    try:
        visitor = store.create(body.model_dump())
    except MissingFieldError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateRefError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"user": VisitorOut.model_validate(visitor)}


@router.get("/users/get-by-ref", summary="Fetch a visitor by ref")
def get_user_by_ref(ref: Optional[str] = None, store: VisitorStore = Depends(get_visitor_store)):
    """
    A missing visitor is reported as a generic 500 "Failed to fetch user",
    the same as any other store failure.
    """
    if not ref:
        raise HTTPException(status_code=400, detail="Reference ID is required")
    try:
        visitor = store.get_by_ref(ref)
    except VisitorNotFound as e:
        logger.error(f"Error fetching user: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch user")
    return {"user": VisitorOut.model_validate(visitor)}


@router.get("/users/get-by-event", summary="List visitors of an event")
def get_users_by_event(event_id: Optional[str] = Query(None, alias="eventId"),
                       store: VisitorStore = Depends(get_visitor_store)):
    if not event_id:
        raise HTTPException(status_code=400, detail="Event ID is required")
    visitors = store.get_by_event(event_id)
    return {"users": [VisitorOut.model_validate(v) for v in visitors]}


@router.put("/users/update-registration", summary="Mark a visitor registered")
def update_registration(body: RegistrationUpdate, store: VisitorStore = Depends(get_visitor_store)):
    if not body.ref or not body.photo_url:
        raise HTTPException(status_code=400, detail="Reference ID and photo URL are required")
    try:
        visitor = store.update_registration(
            body.ref, body.photo_url,
            badge_url=body.badge_url, card_url=body.card_url, print_url=body.print_url,
        )
    except (VisitorNotFound, StoreError) as e:
        logger.error(f"Error updating user registration: {e}")
        raise HTTPException(status_code=500, detail="Failed to update user registration")
    return {"user": VisitorOut.model_validate(visitor)}


@router.put("/users/update-qr-url", summary="Store a visitor's QR image URL")
def update_qr_url(body: QrUrlUpdate, store: VisitorStore = Depends(get_visitor_store)):
    if not body.ref or not body.qr_url:
        raise HTTPException(status_code=400, detail="Reference ID and QR URL are required")
    try:
        visitor = store.update_qr_url(body.ref, body.qr_url)
    except (VisitorNotFound, StoreError) as e:
        logger.error(f"Error updating QR URL: {e}")
        raise HTTPException(status_code=500, detail="Failed to update QR URL")
    return {"user": VisitorOut.model_validate(visitor)}
