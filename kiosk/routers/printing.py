# kiosk/routers/printing.py
"""
Print hand-off.
GET /print            - HTML print view (opened in its own window by the kiosk)
GET /api/print/rawbt  - rawbt:// URL for the Bluetooth printing app
"""

import base64
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse

from kiosk.errors import VisitorNotFound
from kiosk.services.print_service import rawbt_url, render_print_page
from kiosk.services.visitor_store import VisitorStore, get_visitor_store
from kiosk.utils.images import is_remote_url, load_image_bytes, strip_data_url
from kiosk.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/print", response_class=HTMLResponse, summary="Print view for a badge image")
def print_view(image: Optional[str] = None, rotate: bool = False):
    if not image:
        raise HTTPException(status_code=400, detail="Image URL is required")
    return HTMLResponse(content=render_print_page(image, rotate))


@router.get("/api/print/rawbt", summary="RawBT Bluetooth print URL")
async def rawbt(ref: Optional[str] = None, store: VisitorStore = Depends(get_visitor_store)):
    if not ref:
        raise HTTPException(status_code=400, detail="Reference ID is required")
    try:
        visitor = store.get_by_ref(ref)
    except VisitorNotFound:
        raise HTTPException(status_code=404, detail="Visitor not found")

    image = visitor.print_url or visitor.card_url
    if not image:
        raise HTTPException(status_code=404, detail="No badge available for this visitor")

    if is_remote_url(image):
        try:
            data = base64.b64encode(await load_image_bytes(image)).decode("ascii")
        except Exception as e:
            logger.error(f"[PRINT] Could not fetch {image}: {e}")
            raise HTTPException(status_code=500, detail="Failed to load badge image")
    else:
        data = strip_data_url(image)
    return {"url": rawbt_url(data)}
