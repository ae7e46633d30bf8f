# kiosk/routers/storage.py
"""Image uploads: photos, QR codes and badges. Each returns {url}."""

from fastapi import APIRouter, Depends, HTTPException

from kiosk.errors import InvalidImageFormat, StorageError
from kiosk.schemas.media import UploadRequest
from kiosk.services.storage_service import StorageService, get_storage_service
from kiosk.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


async def _upload(body: UploadRequest, storage: StorageService, bucket: str, what: str):
    if not body.base64_image or not body.user_ref:
        raise HTTPException(status_code=400, detail="Base64 image and user reference are required")
    try:
        url = await storage.upload(body.base64_image, body.user_ref, bucket, body.variant)
    except (InvalidImageFormat, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        logger.error(f"Error uploading {what} to storage: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to upload {what}")
    return {"url": url}


@router.post("/storage/upload-photo", summary="Upload a visitor photo")
async def upload_photo(body: UploadRequest, storage: StorageService = Depends(get_storage_service)):
    body.variant = None
    return await _upload(body, storage, "photos", "photo")


@router.post("/storage/upload-qr", summary="Upload a QR code image")
async def upload_qr(body: UploadRequest, storage: StorageService = Depends(get_storage_service)):
    body.variant = None
    return await _upload(body, storage, "qr", "QR image")


@router.post("/storage/upload-badge", summary="Upload a badge, card or print image")
async def upload_badge(body: UploadRequest, storage: StorageService = Depends(get_storage_service)):
    return await _upload(body, storage, "badges", "badge")
