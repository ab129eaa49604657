"""
Rasterizer: paints a PrintLayout onto a transparent RGBA canvas and encodes PNG.

Output is deterministic: fixed compression settings and only the pHYs
(DPI) chunk, so identical layouts yield byte-identical files and therefore
identical storage keys.
"""
import io
import logging

from PIL import Image, ImageDraw, ImageColor

from services.errors import RenderError

logger = logging.getLogger(__name__)

PNG_COMPRESS_LEVEL = 6


class Rasterizer:
    def __init__(self, fonts, max_pixels=None):
        if max_pixels is None:
            from config import MAX_RENDER_PIXELS
            max_pixels = MAX_RENDER_PIXELS
        self.fonts = fonts
        self.max_pixels = max_pixels

    def _check_canvas(self, canvas_size):
        try:
            w, h = (int(v) for v in canvas_size)
        except (TypeError, ValueError) as e:
            raise RenderError(f"Invalid canvas size {canvas_size!r}") from e
        if w <= 0 or h <= 0:
            raise RenderError(f"Invalid canvas size {w}x{h}px")
        if w * h > self.max_pixels:
            raise RenderError(f"Canvas {w}x{h}px exceeds render limit of {self.max_pixels} pixels")
        return w, h

    def render(self, placed_layers, canvas_size, dpi=None):
        """
        Paint layers in order and return PNG bytes.

        Raises:
            RenderError: invalid or oversized canvas, font or encoder failure
        """
        w, h = self._check_canvas(canvas_size)

        try:
            image = Image.new("RGBA", (w, h), (0, 0, 0, 0))
            draw = ImageDraw.Draw(image)

            for layer in placed_layers:
                font = self.fonts.get_font(layer.family, layer.size_px)
                fill = ImageColor.getrgb(layer.color) + (255,)
                for block in layer.blocks:
                    for glyph in block.glyphs:
                        draw.text((glyph.x, glyph.y), glyph.char, font=font, fill=fill, anchor=glyph.anchor)

            buf = io.BytesIO()
            save_kwargs = {"format": "PNG", "compress_level": PNG_COMPRESS_LEVEL}
            if dpi:
                save_kwargs["dpi"] = (dpi, dpi)
            image.save(buf, **save_kwargs)
        except (OSError, ValueError) as e:
            raise RenderError(f"Rasterization failed: {e}") from e

        data = buf.getvalue()
        logger.info(f"[Render] Rasterized {w}x{h}px canvas ({len(data)} bytes)")
        return data

    def render_layout(self, layout):
        return self.render(layout.layers, layout.canvas_size, dpi=layout.dpi)
