# kiosk/routers/health.py
"""
Kiosk health check: database, object storage, avatar API key and webcam.
Any failing dependency turns the overall status to "degraded".
"""

import os
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kiosk.config import settings
from kiosk.database import get_db
from kiosk.services.camera_service import camera_state

router = APIRouter()


def _storage_status() -> str:
    if settings.STORAGE_BACKEND == "supabase":
        return "configured" if settings.SUPABASE_URL and settings.SUPABASE_KEY else "missing_credentials"
    if not os.path.isdir(settings.STORAGE_DIR):
        return "missing_directory"
    return "ok" if os.access(settings.STORAGE_DIR, os.W_OK) else "read_only"


@router.get("/health", summary="Kiosk health check")
def health_check(db: Session = Depends(get_db)):
    checks = {
        "storage": _storage_status(),
        "avatar_api": "configured" if settings.OPENAI_API_KEY else "missing_key",
        "camera": camera_state(),
    }
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = f"error: {e}"

    healthy = checks["database"] == "ok" and checks["storage"] in ("ok", "configured")
    return {
        "status": "ok" if healthy else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "storage_backend": settings.STORAGE_BACKEND,
        **checks,
    }
