# kiosk/routers/badges.py
"""
Avatar generation and badge compositing.
POST /generate-badge - photo → stylized avatar (base64 PNG)
POST /badge/compose  - avatar/photo + visitor text → display + print PNGs
"""

from fastapi import APIRouter, Depends, HTTPException

from kiosk.schemas.media import ComposeBadgeRequest, GenerateBadgeRequest
from kiosk.services.avatar_service import AvatarGenerator, get_avatar_generator
from kiosk.services.badge_compositor import BadgeCompositor, get_badge_compositor

router = APIRouter()


@router.post("/generate-badge", summary="Generate a stylized avatar")
async def generate_badge(body: GenerateBadgeRequest,
                         generator: AvatarGenerator = Depends(get_avatar_generator)):
    if not body.photo_url:
        raise HTTPException(status_code=400, detail="Photo URL is required")
    badge = await generator.generate(body.photo_url, body.visitor_name, body.style)
    if not badge:
        raise HTTPException(status_code=500, detail="Failed to generate badge")
    return {"success": True, "badge": badge}


@router.post("/badge/compose", summary="Composite a badge from a template")
async def compose_badge(body: ComposeBadgeRequest,
                        compositor: BadgeCompositor = Depends(get_badge_compositor)):
    if not body.image:
        raise HTTPException(status_code=400, detail="Image is required")
    visitor = {
        "name": body.name,
        "last_name": body.last_name,
        "company": body.company,
        "position": body.position,
    }
    images = await compositor.compose(body.image, visitor)
    if images is None:
        raise HTTPException(status_code=500, detail="Failed to generate blended badge")
    return {
        "displayUrl": images.display_url,
        "printUrl": images.print_url,
        "width": images.display_size[0],
        "height": images.display_size[1],
    }
