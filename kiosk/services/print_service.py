# kiosk/services/print_service.py
"""
Print dispatch: hands a finished badge to the printer.

Primary path: a minimal HTML page sized to the label, which opens the
platform print dialog once the image has loaded. Legacy path: a
`rawbt://` URL picked up by the RawBT Bluetooth printing app.

Both are fire-and-forget. Nothing reports whether the printer actually
printed; the wizard's "printing" step is a timed animation.
"""

from html import escape
from typing import Optional

from kiosk.config import settings
from kiosk.utils.images import strip_data_url

RAWBT_SCHEME = "rawbt://image.base64,"


def render_print_page(image_url: str, rotate: bool = False,
                      page_width_mm: Optional[int] = None,
                      page_height_mm: Optional[int] = None) -> str:
    """
    HTML document that prints `image_url` on one label.
    rotate=True applies a 270° CSS rotation, complementary to the 90° raster
    rotation the compositor applies to print images.
    """
    width = page_width_mm or settings.PRINT_PAGE_WIDTH_MM
    height = page_height_mm or settings.PRINT_PAGE_HEIGHT_MM
    transform = "transform: rotate(270deg);" if rotate else ""
    # Rotated content swaps the box it has to fit in
    box_w, box_h = (height, width) if rotate else (width, height)

    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Print Badge</title>
    <style>
      @page {{ size: {width}mm {height}mm; margin: 0; }}
      html, body {{ margin: 0; padding: 0; width: {width}mm; height: {height}mm; overflow: hidden; }}
      body {{ display: flex; align-items: center; justify-content: center; }}
      img {{ width: {box_w}mm; height: {box_h}mm; object-fit: contain; {transform} }}
    </style>
  </head>
  <body>
    <img id="badge" src="{escape(image_url, quote=True)}" alt="Badge">
    <script>
      var img = document.getElementById("badge");
      function go() {{ window.focus(); window.print(); }}
      if (img.complete) {{ go(); }} else {{ img.onload = go; }}
      window.onafterprint = function () {{ window.close(); }};
    </script>
  </body>
</html>
"""


def rawbt_url(image_base64: str) -> str:
    """rawbt://image.base64,<data>: accepts a data URL or a bare base64 payload."""
    return f"{RAWBT_SCHEME}{strip_data_url(image_base64)}"
