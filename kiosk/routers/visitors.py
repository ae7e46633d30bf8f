# kiosk/routers/visitors.py
"""
Visitor issuance and the visitor management view.
POST /visitors             - create visitor + QR code (server-assigned ref)
GET  /visitors             - paginated, searchable list
GET  /visitors/{ref}/qr.png - QR code rendered on demand
GET  /visitors/{ref}/print - open the print view for the stored badge
"""

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse, Response

from kiosk.config import settings
from kiosk.errors import DuplicateRefError, KioskError, VisitorNotFound
from kiosk.schemas.visitor import VisitorIssue, VisitorOut
from kiosk.services.qr_service import issue_visitor, registration_url, render_qr_png
from kiosk.services.storage_service import StorageService, get_storage_service
from kiosk.services.visitor_store import VisitorStore, get_visitor_store
from kiosk.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/visitors", status_code=201, summary="Issue a visitor QR code")
async def issue(body: VisitorIssue,
                store: VisitorStore = Depends(get_visitor_store),
                storage: StorageService = Depends(get_storage_service)):
    try:
        issued = await issue_visitor(store, storage, body.model_dump())
    except DuplicateRefError:
        raise HTTPException(status_code=409, detail="Could not allocate a unique reference")
    except KioskError as e:
        logger.error(f"Error generating QR code: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate QR code")
    return {
        "user": VisitorOut.model_validate(issued.visitor),
        "registrationUrl": issued.registration_url,
        "qrUrl": issued.qr_url,
    }


@router.get("/visitors", summary="Visitor management list")
def list_visitors(event_id: Optional[str] = Query(None, alias="eventId"),
                  q: Optional[str] = None,
                  page: int = Query(1, ge=1),
                  page_size: int = Query(20, ge=1, le=200, alias="pageSize"),
                  store: VisitorStore = Depends(get_visitor_store)):
    """Newest update first. `q` matches name, last name, company or email."""
    visitors, total = store.search(event_id or settings.DEFAULT_EVENT_ID, q, page, page_size)
    return {
        "users": [VisitorOut.model_validate(v) for v in visitors],
        "total": total,
        "page": page,
        "pageSize": page_size,
    }


@router.get("/visitors/{ref}/qr.png", summary="QR code image for a visitor")
def visitor_qr(ref: str, store: VisitorStore = Depends(get_visitor_store)):
    try:
        store.get_by_ref(ref)
    except VisitorNotFound:
        raise HTTPException(status_code=404, detail="Visitor not found")
    return Response(content=render_qr_png(registration_url(ref)), media_type="image/png")


@router.get("/visitors/{ref}/print", summary="Print a visitor's badge")
def print_visitor(ref: str, store: VisitorStore = Depends(get_visitor_store)):
    """Prefers the rotated print image; falls back to the card, then the badge."""
    try:
        visitor = store.get_by_ref(ref)
    except VisitorNotFound:
        raise HTTPException(status_code=404, detail="Visitor not found")

    if visitor.print_url:
        image, rotate = visitor.print_url, True
    elif visitor.card_url or visitor.badge_url:
        image, rotate = visitor.card_url or visitor.badge_url, False
    else:
        raise HTTPException(status_code=404, detail="No badge available for this visitor")

    logger.info(f"[PRINT] Manual print for {ref}")
    query = urlencode({"image": image, "rotate": str(rotate).lower()})
    return RedirectResponse(url=f"/print?{query}", status_code=303)
