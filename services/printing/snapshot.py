"""
Layout Snapshot V2 model.

The design tool authors these documents; they reach us as a line-item
property. Instances are only ever built by services.printing.validation and
are immutable afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class PrintArea:
    width_in: float
    height_in: float
    dpi: float


@dataclass(frozen=True)
class PixelSize:
    w: int
    h: int


@dataclass(frozen=True)
class PrintBox:
    x: float
    y: float
    w: float
    h: float


@dataclass(frozen=True)
class FontSpec:
    family: str
    size_pt: float
    line_height: float
    letter_spacing_em: float
    vertical: bool
    text_orientation: str
    hyphen_policy: str


@dataclass(frozen=True)
class Alignment:
    h: str
    v: str


@dataclass(frozen=True)
class TextBlock:
    text: str
    x_in: float
    y_in: float
    anchor: str


@dataclass(frozen=True)
class TextLayer:
    font: FontSpec
    color: str
    align: Alignment
    text_blocks: Tuple[TextBlock, ...]


@dataclass(frozen=True)
class SnapshotMeta:
    base_font_size_requested: float
    orientation: str
    print_box_px: Optional[PrintBox] = None
    canvas_px: Optional[PixelSize] = None


@dataclass(frozen=True)
class LayoutSnapshot:
    version: int
    print_area: PrintArea
    origin: str
    canvas_px: PixelSize
    layers: Tuple[TextLayer, ...]
    meta: SnapshotMeta

    @property
    def text(self) -> str:
        """All block text in paint order, for logs and reports."""
        return " / ".join(
            block.text for layer in self.layers for block in layer.text_blocks
        )
