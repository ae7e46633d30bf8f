# kiosk/services/badge_compositor.py
"""
Badge compositor: template + avatar/photo + visitor text → PNG badges.

Pipeline (order matters):
  1. allocate a raster at the template's native size (a template image
     scales the layout offsets to its own size)
  2. load the template, then the photo (chained: the photo is only
     fetched once the template has loaded)
  3. draw the template as the base layer
  4. draw the photo at a fixed square size, centered (single layout) or
     in two symmetric slots (dual layout); source aspect ratio is ignored
  5. draw NAME / POSITION / ( COMPANY ) centered beneath the photo
  6. display raster = result as-is
  7. print raster = result rotated 90° clockwise, width/height swapped,
     because the label printer feeds along the long axis

Any load failure is logged and compose() returns None: no badge, no print.
"""

from dataclasses import dataclass, replace
from io import BytesIO
from typing import Optional, Tuple

import httpx
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from kiosk.config import settings
from kiosk.utils.images import load_image_bytes, to_data_url
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_FONT = "DejaVuSans-Bold.ttf"


@dataclass
class BadgeTemplate:
    size: Tuple[int, int]
    layout: str = "single"                   # single | dual
    photo_size: int = 420
    photo_top: int = 160
    text_gap: int = 70                       # photo bottom → name baseline block
    name_font_size: int = 64
    detail_font_size: int = 34
    line_spacing: int = 60
    text_color: str = "#ffffff"
    background_path: Optional[str] = None    # None → built-in artwork
    font_path: Optional[str] = None

    def photo_boxes(self):
        """Top-left corners of the square photo slots."""
        width, _ = self.size
        if self.layout == "dual":
            centers = (width // 4, 3 * width // 4)
        else:
            centers = (width // 2,)
        return [(cx - self.photo_size // 2, self.photo_top) for cx in centers]

    @property
    def text_top(self) -> int:
        return self.photo_top + self.photo_size + self.text_gap

    def scaled_to(self, size: Tuple[int, int]) -> "BadgeTemplate":
        """
        Same layout on a raster of `size`. Offsets and font sizes shrink or
        grow by the tighter of the two axis ratios so the photo and text stay
        on the canvas.
        """
        factor = min(size[0] / self.size[0], size[1] / self.size[1])

        def scale(value: int) -> int:
            return max(1, round(value * factor))

        return replace(
            self,
            size=tuple(size),
            photo_size=scale(self.photo_size),
            photo_top=scale(self.photo_top),
            text_gap=scale(self.text_gap),
            name_font_size=scale(self.name_font_size),
            detail_font_size=scale(self.detail_font_size),
            line_spacing=scale(self.line_spacing),
        )


BUILTIN_TEMPLATES = {
    "single": BadgeTemplate(size=(720, 1080)),
    "dual": BadgeTemplate(size=(1400, 900), layout="dual", photo_size=400, photo_top=120,
                          text_gap=60, name_font_size=72, detail_font_size=38),
}


@dataclass
class BadgeImages:
    display_url: str
    print_url: str
    display_size: Tuple[int, int]
    print_size: Tuple[int, int]


def draw_builtin_background(template: BadgeTemplate) -> Image.Image:
    """Plain event artwork used when no template image is configured."""
    width, height = template.size
    img = Image.new("RGBA", template.size, "#14213d")
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 0, width, height // 10], fill="#fca311")
    draw.rectangle([0, height - height // 14, width, height], fill="#fca311")
    for left, top in template.photo_boxes():
        pad = 12
        draw.ellipse(
            [left - pad, top - pad, left + template.photo_size + pad, top + template.photo_size + pad],
            fill="#e5e5e5",
        )
    return img


def load_template(layout: Optional[str] = None, background_path: Optional[str] = None,
                  font_path: Optional[str] = None) -> BadgeTemplate:
    """
    Template for the configured layout. A background image, when given,
    defines the native raster size and the layout is scaled to fit it.
    """
    base = BUILTIN_TEMPLATES.get(layout or settings.BADGE_LAYOUT, BUILTIN_TEMPLATES["single"])
    template = replace(
        base,
        background_path=background_path or settings.BADGE_TEMPLATE_PATH,
        font_path=font_path or settings.BADGE_FONT_PATH,
    )
    if template.background_path:
        with Image.open(template.background_path) as img:
            template = template.scaled_to(img.size)
    return template


def _load_font(path: Optional[str], size: int):
    try:
        return ImageFont.truetype(path or DEFAULT_FONT, size)
    except OSError:
        return ImageFont.load_default(size=size)


def _encode_png(img: Image.Image) -> str:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return to_data_url(buf.getvalue(), "image/png")


class BadgeCompositor:
    def __init__(self, template: BadgeTemplate, http: Optional[httpx.AsyncClient] = None):
        self.template = template
        self.http = http

    def _load_background(self) -> Image.Image:
        if self.template.background_path:
            with Image.open(self.template.background_path) as img:
                return img.convert("RGBA").resize(self.template.size)
        return draw_builtin_background(self.template)

    async def _load_photo(self, source: str) -> Image.Image:
        data = await load_image_bytes(source, self.http)
        with Image.open(BytesIO(data)) as img:
            return img.convert("RGBA")

    def _draw_centered(self, draw, text: str, cy: int, font):
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        x = self.template.size[0] / 2 - (right - left) / 2 - left
        y = cy - (bottom - top) / 2 - top
        draw.text((x, y), text, font=font, fill=self.template.text_color)

    def _draw_text(self, canvas: Image.Image, visitor: dict):
        name = (visitor.get("name") or "").strip()
        if not name:
            return
        draw = ImageDraw.Draw(canvas)
        name_font = _load_font(self.template.font_path, self.template.name_font_size)
        detail_font = _load_font(self.template.font_path, self.template.detail_font_size)

        y = self.template.text_top
        self._draw_centered(draw, name.upper(), y, name_font)
        position = (visitor.get("position") or "").strip()
        if position:
            y += self.template.line_spacing + self.template.name_font_size // 3
            self._draw_centered(draw, position.upper(), y, detail_font)
        company = (visitor.get("company") or "").strip()
        if company:
            y += self.template.line_spacing
            self._draw_centered(draw, f"( {company.upper()} )", y, detail_font)

    def render(self, background: Image.Image, photo: Image.Image, visitor: Optional[dict]) -> Image.Image:
        canvas = Image.new("RGBA", self.template.size, (0, 0, 0, 0))
        canvas.alpha_composite(background.resize(self.template.size))

        size = self.template.photo_size
        square = photo.resize((size, size))
        for box in self.template.photo_boxes():
            canvas.alpha_composite(square, dest=box)

        if visitor:
            self._draw_text(canvas, visitor)
        return canvas

    async def compose(self, image: str, visitor: Optional[dict] = None) -> Optional[BadgeImages]:
        """
        image: avatar or photo as URL or data URL.
        visitor: optional dict with name / position / company.
        """
        try:
            background = self._load_background()
        except (OSError, UnidentifiedImageError) as e:
            logger.error(f"[BADGE] Failed to load template image: {e}")
            return None
        try:
            photo = await self._load_photo(image)
        except Exception as e:
            logger.error(f"[BADGE] Failed to load user photo: {e}")
            return None

        try:
            display = self.render(background, photo, visitor)
        except (ValueError, OSError) as e:
            logger.error(f"[BADGE] Template {self.template.size} cannot hold the layout: {e}")
            return None
        printable = display.transpose(Image.Transpose.ROTATE_270)

        logger.info(f"[BADGE] Composited {display.size[0]}x{display.size[1]} badge "
                    f"for {(visitor or {}).get('name') or 'visitor'}")
        return BadgeImages(
            display_url=_encode_png(display),
            print_url=_encode_png(printable),
            display_size=display.size,
            print_size=printable.size,
        )


def get_badge_compositor() -> BadgeCompositor:
    """FastAPI dependency: compositor for the configured template."""
    return BadgeCompositor(load_template())
