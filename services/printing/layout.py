"""
Layout engine: Layout Snapshot V2 -> absolute glyph placements on the print canvas.

All coordinates are print-canvas pixels from the top-left origin. Nothing
is drawn here; services.printing.rasterizer paints the result.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from constants import JP_LONG_VBAR_SOURCE_CHARS, JP_LONG_VBAR_GLYPH, HYPHEN_POLICY_JP_LONG_VBAR
from services.errors import RenderError
from services.printing.layout_utils import points_to_pixels, inches_to_pixels

# Glyph anchors (Pillow text anchor codes)
HORIZONTAL_GLYPH_ANCHOR = "ls"  # left, baseline
VERTICAL_GLYPH_ANCHOR = "ms"    # middle, baseline

_JP_LONG_VBAR_TABLE = str.maketrans({ch: JP_LONG_VBAR_GLYPH for ch in JP_LONG_VBAR_SOURCE_CHARS})


@dataclass(frozen=True)
class PlacedGlyph:
    char: str
    x: float
    y: float
    anchor: str


@dataclass(frozen=True)
class PlacedBlock:
    text: str
    x: int
    y: int
    glyphs: Tuple[PlacedGlyph, ...]
    width: float
    height: float
    ascent: int
    descent: int


@dataclass(frozen=True)
class PlacedLayer:
    family: str
    size_px: int
    color: str
    vertical: bool
    blocks: Tuple[PlacedBlock, ...]


@dataclass(frozen=True)
class PrintLayout:
    canvas_size: Tuple[int, int]
    dpi: float
    layers: Tuple[PlacedLayer, ...]


def apply_hyphen_policy(text, policy):
    """Upright vertical text draws long-vowel marks and dashes as a vertical bar."""
    if policy == HYPHEN_POLICY_JP_LONG_VBAR:
        return text.translate(_JP_LONG_VBAR_TABLE)
    return text


def font_size_px(size_pt, canvas_width, design_width):
    """Authoring size in points, scaled from the design canvas to the print canvas."""
    return max(1, round(points_to_pixels(size_pt) * canvas_width / design_width))


def _layout_horizontal(text, x, y, font, size_px, line_height, spacing):
    ascent, descent = font.getmetrics()
    line_advance = size_px * line_height

    glyphs = []
    widths = []
    lines = text.split("\n")
    for i, line in enumerate(lines):
        advances = [font.getlength(ch) for ch in line]
        run_width = sum(advances) + spacing * max(0, len(line) - 1)
        widths.append(run_width)

        baseline = y + i * line_advance
        cursor = x - run_width / 2
        for ch, advance in zip(line, advances):
            if not ch.isspace():
                glyphs.append(PlacedGlyph(ch, cursor, baseline, HORIZONTAL_GLYPH_ANCHOR))
            cursor += advance + spacing

    width = max(widths) if widths else 0.0
    height = ascent + descent + (len(lines) - 1) * line_advance
    return glyphs, width, height, ascent, descent


def _layout_vertical(text, x, y, font, size_px, line_height, spacing):
    ascent, descent = font.getmetrics()
    advance = size_px * line_height + spacing
    column_pitch = size_px * line_height

    glyphs = []
    columns = text.split("\n")
    widest = 0.0
    for i, column in enumerate(columns):
        centre = x - i * column_pitch
        for j, ch in enumerate(column):
            widest = max(widest, font.getlength(ch))
            if not ch.isspace():
                glyphs.append(PlacedGlyph(ch, centre, y + j * advance, VERTICAL_GLYPH_ANCHOR))

    longest = max((len(c) for c in columns), default=0)
    width = widest + (len(columns) - 1) * column_pitch
    height = ascent + descent + max(0, longest - 1) * advance
    return glyphs, width, height, ascent, descent


def layout_block(block, font, size_px, font_spec, dpi):
    x = inches_to_pixels(block.x_in, dpi)
    y = inches_to_pixels(block.y_in, dpi)
    spacing = font_spec.letter_spacing_em * size_px

    if font_spec.vertical:
        text = apply_hyphen_policy(block.text, font_spec.hyphen_policy)
        placed = _layout_vertical(text, x, y, font, size_px, font_spec.line_height, spacing)
    else:
        placed = _layout_horizontal(block.text, x, y, font, size_px, font_spec.line_height, spacing)

    glyphs, width, height, ascent, descent = placed
    return PlacedBlock(
        text=block.text,
        x=x,
        y=y,
        glyphs=tuple(glyphs),
        width=width,
        height=height,
        ascent=ascent,
        descent=descent,
    )


def layout_snapshot(snapshot, fonts):
    """
    Compute glyph placements for every layer of a validated snapshot.

    Layers keep their paint order; no collision detection is done, later
    layers simply paint over earlier ones.
    """
    area = snapshot.print_area
    canvas_w = inches_to_pixels(area.width_in, area.dpi)
    canvas_h = inches_to_pixels(area.height_in, area.dpi)
    if canvas_w <= 0 or canvas_h <= 0:
        raise RenderError(f"Print canvas collapses to {canvas_w}x{canvas_h}px")

    layers = []
    for layer in snapshot.layers:
        family = fonts.resolve_family(layer.font.family)
        size_px = font_size_px(layer.font.size_pt, canvas_w, snapshot.canvas_px.w)
        try:
            font = fonts.get_font(family, size_px)
        except OSError as e:
            raise RenderError(f"Could not load font '{family}' at {size_px}px: {e}") from e

        blocks = tuple(layout_block(block, font, size_px, layer.font, area.dpi) for block in layer.text_blocks)
        layers.append(PlacedLayer(
            family=family,
            size_px=size_px,
            color=layer.color,
            vertical=layer.font.vertical,
            blocks=blocks,
        ))

    return PrintLayout(canvas_size=(canvas_w, canvas_h), dpi=area.dpi, layers=tuple(layers))
