"""Strict validation for Layout Snapshot V2 documents.

Enforces:
- Version literal (2 only, no migration)
- Print area / canvas dimensions strictly positive
- Fixed literals (origin, textOrientation, hyphenPolicy, align, anchor)
- Hex colors

Every violation is collected with its field path so a caller can report
all problems in one pass. Nothing here has side effects.
"""
import json
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional

from constants import (
    SNAPSHOT_VERSION,
    SNAPSHOT_ORIGIN,
    TEXT_ORIENTATION_UPRIGHT,
    HYPHEN_POLICY_JP_LONG_VBAR,
    ANCHOR_CENTER_BASELINE,
    ORIENTATIONS,
)
from services.errors import ValidationError
from services.printing.snapshot import (
    Alignment,
    FontSpec,
    LayoutSnapshot,
    PixelSize,
    PrintArea,
    PrintBox,
    SnapshotMeta,
    TextBlock,
    TextLayer,
)

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

_MISSING = object()


@dataclass
class SnapshotValidation:
    ok: bool
    errors: List[str] = field(default_factory=list)
    snapshot: Optional[LayoutSnapshot] = None


def _join(path, key):
    return f"{path}.{key}" if path else key


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class _FieldChecker:
    """Reads typed fields out of raw mappings, recording every violation."""

    def __init__(self):
        self.errors = []

    def fail(self, path, message):
        self.errors.append(f"{path}: {message}")

    def obj(self, value, path):
        if not isinstance(value, dict):
            self.fail(path, "expected object")
            return None
        return value

    def get(self, obj, key, path, required=True):
        value = obj.get(key, _MISSING)
        if value is _MISSING:
            if required:
                self.fail(_join(path, key), "required")
            return _MISSING
        return value

    def child(self, obj, key, path, required=True):
        value = self.get(obj, key, path, required)
        if value is _MISSING:
            return None
        return self.obj(value, _join(path, key))

    def number(self, obj, key, path):
        value = self.get(obj, key, path)
        if value is _MISSING:
            return None
        if not _is_number(value):
            self.fail(_join(path, key), f"expected number, got {value!r}")
            return None
        return float(value)

    def positive(self, obj, key, path):
        value = self.number(obj, key, path)
        if value is not None and value <= 0:
            self.fail(_join(path, key), f"must be > 0, got {obj[key]!r}")
            return None
        return value

    def positive_int(self, obj, key, path):
        value = self.get(obj, key, path)
        if value is _MISSING:
            return None
        if not isinstance(value, int) or isinstance(value, bool):
            self.fail(_join(path, key), f"expected integer, got {value!r}")
            return None
        if value <= 0:
            self.fail(_join(path, key), f"must be > 0, got {value!r}")
            return None
        return value

    def string(self, obj, key, path, non_empty=False):
        value = self.get(obj, key, path)
        if value is _MISSING:
            return None
        if not isinstance(value, str):
            self.fail(_join(path, key), f"expected string, got {value!r}")
            return None
        if non_empty and not value.strip():
            self.fail(_join(path, key), "must not be empty")
            return None
        return value

    def boolean(self, obj, key, path):
        value = self.get(obj, key, path)
        if value is _MISSING:
            return None
        if not isinstance(value, bool):
            self.fail(_join(path, key), f"expected boolean, got {value!r}")
            return None
        return value

    def literal(self, obj, key, expected, path, required=True):
        value = self.get(obj, key, path, required)
        if value is _MISSING:
            return expected if not required else None
        if value != expected or isinstance(value, bool):
            self.fail(_join(path, key), f"must be {expected!r}, got {value!r}")
            return None
        return value

    def one_of(self, obj, key, choices, path):
        value = self.get(obj, key, path)
        if value is _MISSING:
            return None
        if value not in choices:
            self.fail(_join(path, key), f"must be one of {list(choices)}, got {value!r}")
            return None
        return value

    def array(self, obj, key, path):
        value = self.get(obj, key, path)
        if value is _MISSING:
            return None
        if not isinstance(value, list):
            self.fail(_join(path, key), "expected array")
            return None
        return value


def _check_version(check, doc):
    value = check.get(doc, "version", "")
    if value is _MISSING:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value != SNAPSHOT_VERSION:
        check.fail("version", f"unsupported version {value!r} (expected {SNAPSHOT_VERSION})")
        return None
    return value


def _check_print_area(check, doc):
    area = check.child(doc, "printArea", "")
    if area is None:
        return None
    width = check.positive(area, "widthIn", "printArea")
    height = check.positive(area, "heightIn", "printArea")
    dpi = check.positive(area, "dpi", "printArea")
    if None in (width, height, dpi):
        return None
    return PrintArea(width_in=width, height_in=height, dpi=dpi)


def _check_pixel_size(check, obj, key, path, required=True):
    size = check.child(obj, key, path, required)
    if size is None:
        return None
    size_path = _join(path, key)
    w = check.positive_int(size, "w", size_path)
    h = check.positive_int(size, "h", size_path)
    if None in (w, h):
        return None
    return PixelSize(w=w, h=h)


def _check_font(check, layer, path):
    font = check.child(layer, "font", path)
    if font is None:
        return None
    font_path = _join(path, "font")
    family = check.string(font, "family", font_path, non_empty=True)
    size_pt = check.positive(font, "sizePt", font_path)
    line_height = check.positive(font, "lineHeight", font_path)
    letter_spacing = check.number(font, "letterSpacingEm", font_path)
    vertical = check.boolean(font, "vertical", font_path)
    orientation = check.literal(font, "textOrientation", TEXT_ORIENTATION_UPRIGHT, font_path)
    hyphen = check.literal(font, "hyphenPolicy", HYPHEN_POLICY_JP_LONG_VBAR, font_path)
    if None in (family, size_pt, line_height, letter_spacing, vertical, orientation, hyphen):
        return None
    return FontSpec(
        family=family,
        size_pt=size_pt,
        line_height=line_height,
        letter_spacing_em=letter_spacing,
        vertical=vertical,
        text_orientation=orientation,
        hyphen_policy=hyphen,
    )


def _check_blocks(check, layer, path):
    raw_blocks = check.array(layer, "textBlocks", path)
    if raw_blocks is None:
        return None

    blocks = []
    ok = True
    for i, raw in enumerate(raw_blocks):
        block_path = f"{_join(path, 'textBlocks')}[{i}]"
        block = check.obj(raw, block_path)
        if block is None:
            ok = False
            continue
        text = check.string(block, "text", block_path)
        x_in = check.number(block, "xIn", block_path)
        y_in = check.number(block, "yIn", block_path)
        anchor = check.literal(block, "anchor", ANCHOR_CENTER_BASELINE, block_path)
        if None in (text, x_in, y_in, anchor):
            ok = False
            continue
        blocks.append(TextBlock(text=text, x_in=x_in, y_in=y_in, anchor=anchor))
    return tuple(blocks) if ok else None


def _check_layer(check, raw, path):
    layer = check.obj(raw, path)
    if layer is None:
        return None

    check.literal(layer, "type", "text", path, required=False)
    font = _check_font(check, layer, path)

    color = check.string(layer, "color", path)
    if color is not None and not HEX_COLOR_RE.match(color):
        check.fail(_join(path, "color"), f"invalid hex color {color!r}")
        color = None

    align = None
    raw_align = check.child(layer, "align", path)
    if raw_align is not None:
        align_path = _join(path, "align")
        h = check.literal(raw_align, "h", "center", align_path)
        v = check.literal(raw_align, "v", "baseline", align_path)
        if None not in (h, v):
            align = Alignment(h=h, v=v)

    blocks = _check_blocks(check, layer, path)
    if None in (font, color, align, blocks):
        return None
    return TextLayer(font=font, color=color, align=align, text_blocks=blocks)


def _check_meta(check, doc):
    meta = check.child(doc, "meta", "")
    if meta is None:
        return None
    base_size = check.positive(meta, "baseFontSizeRequested", "meta")
    orientation = check.one_of(meta, "orientation", ORIENTATIONS, "meta")

    print_box = None
    raw_box = check.child(meta, "printBoxPx", "meta", required=False)
    if raw_box is not None:
        x = check.number(raw_box, "x", "meta.printBoxPx")
        y = check.number(raw_box, "y", "meta.printBoxPx")
        w = check.positive(raw_box, "w", "meta.printBoxPx")
        h = check.positive(raw_box, "h", "meta.printBoxPx")
        if None not in (x, y, w, h):
            print_box = PrintBox(x=x, y=y, w=w, h=h)

    canvas = _check_pixel_size(check, meta, "canvasPx", "meta", required=False)

    if None in (base_size, orientation):
        return None
    return SnapshotMeta(
        base_font_size_requested=base_size,
        orientation=orientation,
        print_box_px=print_box,
        canvas_px=canvas,
    )


def validate_snapshot(raw):
    """
    Validate a Layout Snapshot V2 document.

    Accepts a mapping or the JSON string the storefront transports it as.
    Returns a SnapshotValidation; `snapshot` is only set when `ok` is True.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            return SnapshotValidation(ok=False, errors=[f"snapshot: invalid JSON ({e})"])

    check = _FieldChecker()
    doc = check.obj(raw, "snapshot")
    if doc is None:
        return SnapshotValidation(ok=False, errors=check.errors)

    version = _check_version(check, doc)
    print_area = _check_print_area(check, doc)
    origin = check.literal(doc, "origin", SNAPSHOT_ORIGIN, "")
    canvas_px = _check_pixel_size(check, doc, "canvasPx", "")

    layers = None
    raw_layers = check.array(doc, "layers", "")
    if raw_layers is not None:
        parsed = [_check_layer(check, raw_layer, f"layers[{i}]") for i, raw_layer in enumerate(raw_layers)]
        if None not in parsed:
            layers = tuple(parsed)

    meta = _check_meta(check, doc)

    if check.errors:
        return SnapshotValidation(ok=False, errors=check.errors)

    snapshot = LayoutSnapshot(
        version=version,
        print_area=print_area,
        origin=origin,
        canvas_px=canvas_px,
        layers=layers,
        meta=meta,
    )
    return SnapshotValidation(ok=True, snapshot=snapshot)


def parse_snapshot(raw):
    """
    Validate and return the LayoutSnapshot.

    Raises:
        ValidationError: carrying every violation found
    """
    result = validate_snapshot(raw)
    if not result.ok:
        raise ValidationError(result.errors)
    return result.snapshot
