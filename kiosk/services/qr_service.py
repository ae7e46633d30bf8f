# kiosk/services/qr_service.py
"""
QR issuance: creates the visitor row, renders the registration QR code
and stores it against the visitor.

Order matters: the row must exist before the QR code is rendered, because
the encoded URL embeds the final ref and the write-back looks the ref up.
"""

import secrets
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import qrcode

from kiosk.config import settings
from kiosk.errors import DuplicateRefError, KioskError
from kiosk.models.visitor import Visitor
from kiosk.services.storage_service import StorageService
from kiosk.services.visitor_store import VisitorStore
from kiosk.utils.images import to_data_url
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)

REF_PREFIX = "REF"
REF_DIGITS = 9


@dataclass
class IssuedVisitor:
    visitor: Visitor
    registration_url: str
    qr_url: Optional[str]


def generate_ref() -> str:
    """REF + 9 random digits. Uniqueness is enforced by the store, not here."""
    return REF_PREFIX + "".join(str(secrets.randbelow(10)) for _ in range(REF_DIGITS))


def registration_url(ref: str, base_url: Optional[str] = None) -> str:
    """URL the kiosk opens after scanning: {origin}/register?id={ref}"""
    origin = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
    return f"{origin}/register?id={ref}"


def render_qr_png(data: str, box_size: int = 10, border: int = 4) -> bytes:
    """Rasterize `data` as a black-on-white QR code PNG."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def create_with_unique_ref(store: VisitorStore, fields: dict,
                           max_attempts: Optional[int] = None) -> Visitor:
    """Insert the visitor under a fresh ref, drawing a new one on each conflict."""
    attempts = max_attempts or settings.REF_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        ref = generate_ref()
        try:
            return store.create({**fields, "ref": ref})
        except DuplicateRefError:
            logger.warning(f"[QR] Ref collision on {ref} (attempt {attempt}/{attempts})")
    raise DuplicateRefError(ref)


async def issue_visitor(store: VisitorStore, storage: StorageService, fields: dict,
                        base_url: Optional[str] = None) -> IssuedVisitor:
    """
    Full issuance flow: create row → render QR → upload → write qr_url back.
    A failed QR upload leaves the visitor without qr_url; the QR can still
    be rendered on demand from the ref.
    """
    visitor = create_with_unique_ref(store, fields)
    url = registration_url(visitor.ref, base_url)

    png = render_qr_png(url)
    try:
        qr_url = await storage.upload(to_data_url(png, "image/png"), visitor.ref, "qr")
    except KioskError as e:
        logger.error(f"[QR] Upload failed for {visitor.ref}: {e}")
        return IssuedVisitor(visitor=visitor, registration_url=url, qr_url=None)

    visitor = store.update_qr_url(visitor.ref, qr_url)
    logger.info(f"[QR] Issued {visitor.ref} → {url}")
    return IssuedVisitor(visitor=visitor, registration_url=url, qr_url=qr_url)
