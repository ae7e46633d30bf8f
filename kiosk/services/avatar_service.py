# kiosk/services/avatar_service.py
"""
Avatar generation: sends the visitor photo to the OpenAI image-edit API
and gets back a stylized, circle-cropped avatar on a transparent background.

generate() returns None on ANY failure (missing key, bad photo, upstream
error, empty response). Callers treat None as "generation failed".
"""

from enum import Enum
from typing import Optional

import httpx
import openai

from kiosk.config import settings
from kiosk.utils.images import load_image_bytes
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)


class AvatarStyle(str, Enum):
    PHOTO_SHOOT = "photo-shoot"
    ANIME = "anime"
    GLAM_80S = "80s-Glam"

    @classmethod
    def parse(cls, value) -> "AvatarStyle":
        """Unknown styles fall back to 80s-Glam."""
        try:
            return cls(value)
        except ValueError:
            return cls.GLAM_80S


BASE_PROMPT = (
    "Convert the provided portrait into a high-quality avatar. "
    "Keep the likeness and recognizable features.\n"
    "Place the subject inside a perfect circular crop with no stroke, border or shadow.\n"
    "Make the background fully transparent outside the portrait.\n"
    "No text, no extra elements, only the single character's face and shoulders inside the circle."
)

AVATAR_PROMPTS = {
    AvatarStyle.PHOTO_SHOOT: "3D anime-style character.",
    AvatarStyle.ANIME: (
        "Create an image in a detailed anime aesthetic: expressive eyes, smooth cel-shaded "
        "coloring, and clean linework. Emphasize emotion and character presence, with a sense "
        "of motion or atmosphere typical of anime scenes."
    ),
    AvatarStyle.GLAM_80S: (
        "Create a selfie styled like a cheesy 1980s mall glamour shot, foggy soft lighting, "
        "teal and magenta lasers in the background, feathered hair, shoulder pads, "
        "portrait studio vibes."
    ),
}

_missing = set(AvatarStyle) - set(AVATAR_PROMPTS)
if _missing:
    raise RuntimeError(f"No avatar prompt for styles: {sorted(s.value for s in _missing)}")


def build_prompt(style) -> str:
    return f"{AVATAR_PROMPTS[AvatarStyle.parse(style)]}\n{BASE_PROMPT}"


class AvatarGenerator:
    def __init__(self, client: Optional[openai.AsyncOpenAI], model: Optional[str] = None,
                 http: Optional[httpx.AsyncClient] = None):
        self.client = client
        self.model = model or settings.AVATAR_MODEL
        self.http = http

    async def generate(self, photo: str, visitor_name: str = "", style="photo-shoot") -> Optional[str]:
        """
        photo: remote URL or data URL. Returns the avatar as bare base64 PNG, or None.
        """
        if self.client is None:
            logger.error("[AVATAR] OpenAI API key not configured")
            return None

        avatar_style = AvatarStyle.parse(style)
        logger.info(f"[AVATAR] Generating {avatar_style.value} avatar for {visitor_name or 'visitor'}")

        try:
            image_bytes = await load_image_bytes(photo, self.http)
        except Exception as e:
            logger.error(f"[AVATAR] Could not load photo: {e}")
            return None

        try:
            response = await self.client.images.edit(
                model=self.model,
                image=("visitor.png", image_bytes, "image/png"),
                prompt=build_prompt(avatar_style),
                quality="low",
                background="transparent",
                size="1024x1024",
                n=1,
            )
        except openai.OpenAIError as e:
            logger.error(f"[AVATAR] Upstream generation failed: {e}")
            return None

        if not response.data or not response.data[0].b64_json:
            logger.error("[AVATAR] Upstream returned no image data")
            return None
        return response.data[0].b64_json


def get_avatar_generator() -> AvatarGenerator:
    """FastAPI dependency: generator backed by the configured OpenAI key."""
    client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY) if settings.OPENAI_API_KEY else None
    return AvatarGenerator(client)
