# kiosk/services/storage_service.py
"""
Object storage gateway: accepts data-URL images and returns public URLs.

Buckets:
  photos  captured visitor photos (JPEG)
  qr      rendered QR codes (PNG)
  badges  composited badges (PNG); card/print variants share the bucket
          and are told apart by the `{ref}-card` / `{ref}-print` prefix

Every upload gets a fresh uuid in its filename, so two uploads of the same
image produce two objects. Nothing is deduplicated or garbage-collected.
"""

import os
import re
import uuid
from typing import Optional

import httpx

from kiosk.config import settings
from kiosk.errors import StorageError
from kiosk.utils.images import decode_data_url, is_remote_url
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)

BUCKETS = {
    "photos": ("jpg", "image/jpeg"),
    "qr":     ("png", "image/png"),
    "badges": ("png", "image/png"),
}
BADGE_VARIANTS = {"card", "print"}
OWNER_REF_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class LocalStorageBackend:
    """Writes objects under STORAGE_DIR/<bucket>/: served by the app at /storage."""

    def __init__(self, root_dir: str, public_url: str):
        self.root_dir = root_dir
        self.public_url = public_url.rstrip("/")

    async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        root = os.path.realpath(self.root_dir)
        target = os.path.realpath(os.path.join(root, bucket, path))
        if os.path.commonpath([root, target]) != root:
            raise StorageError(f"Refusing to write outside storage: {bucket}/{path}")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        try:
            with open(target, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {bucket}/{path}: {e}")
        return f"{self.public_url}/{bucket}/{path}"


class SupabaseStorageBackend:
    """Supabase Storage REST API. Uploads with x-upsert so re-puts overwrite."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        url = f"{self.base_url}/storage/v1/object/{bucket}/{path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "apikey": self.api_key,
            "Content-Type": content_type,
            "x-upsert": "true",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, content=data, headers=headers)
        except httpx.HTTPError as e:
            raise StorageError(f"Supabase upload failed for {bucket}/{path}: {e}")
        if response.status_code >= 400:
            raise StorageError(f"Supabase returned HTTP {response.status_code} for {bucket}/{path}")
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"


class StorageService:
    def __init__(self, backend):
        self.backend = backend

    async def upload(self, base64_image: str, owner_ref: str, bucket: str,
                     variant: Optional[str] = None) -> str:
        """
        Store a data-URL image and return its public URL.
        Already-hosted URLs are returned unchanged.
        """
        if is_remote_url(base64_image):
            return base64_image
        if not owner_ref or not OWNER_REF_PATTERN.match(owner_ref):
            raise ValueError(f"Invalid user reference: {owner_ref!r}")
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket: {bucket}")
        if variant is not None and (bucket != "badges" or variant not in BADGE_VARIANTS):
            raise ValueError(f"Unknown variant {variant!r} for bucket {bucket}")

        data = decode_data_url(base64_image)
        ext, content_type = BUCKETS[bucket]
        stem = f"{owner_ref}-{variant}" if variant else owner_ref
        path = f"{stem}_{uuid.uuid4()}.{ext}"

        url = await self.backend.put(bucket, path, data, content_type)
        logger.info(f"[STORAGE] {bucket}/{path} ({len(data)} bytes)")
        return url


def build_backend():
    if settings.STORAGE_BACKEND == "supabase":
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
        return SupabaseStorageBackend(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    return LocalStorageBackend(settings.STORAGE_DIR, settings.STORAGE_PUBLIC_URL)


def get_storage_service() -> StorageService:
    """FastAPI dependency: storage gateway for the configured backend."""
    return StorageService(build_backend())
