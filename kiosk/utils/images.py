# kiosk/utils/images.py
"""
Helpers for moving images between data URLs, raw bytes and remote URLs.
"""

import base64
import binascii
from typing import Optional

import httpx

from kiosk.errors import InvalidImageFormat


def is_remote_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def decode_data_url(data_url: str) -> bytes:
    """
    Strip the `data:<mime>;base64,` prefix and decode the payload.
    Raises InvalidImageFormat when the prefix or payload is missing.
    """
    parts = data_url.split(",", 1)
    if len(parts) != 2 or not parts[1]:
        raise InvalidImageFormat()
    try:
        return base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError):
        raise InvalidImageFormat()


def to_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def strip_data_url(value: str) -> str:
    """Bare base64 payload of a data URL; bare payloads pass through."""
    return value.split(",", 1)[1] if value.startswith("data:") and "," in value else value


async def load_image_bytes(source: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Fetch a remote URL or decode a data URL into raw image bytes."""
    if not is_remote_url(source):
        return decode_data_url(source)

    if client is not None:
        response = await client.get(source)
        response.raise_for_status()
        return response.content

    async with httpx.AsyncClient(timeout=30) as own_client:
        response = await own_client.get(source)
        response.raise_for_status()
        return response.content
