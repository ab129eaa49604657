"""
Layout Utilities for print rendering.

Handles:
1. Font Registration (authoring-tool families, with a CJK fallback).
2. Unit conversion between points, inches and print pixels.
"""
import os
import logging
import threading

from PIL import ImageFont

from constants import (
    CSS_PX_PER_INCH,
    POINTS_PER_INCH,
    FONT_FAMILIES,
    FALLBACK_FONT_FAMILY,
    FALLBACK_FONT_FILE,
)

logger = logging.getLogger(__name__)


def points_to_pixels(pt):
    """Typographic points to CSS pixels (96 px per 72 pt)."""
    return round(pt * CSS_PX_PER_INCH / POINTS_PER_INCH)


def inches_to_pixels(inches, dpi):
    return round(inches * dpi)


class FontRegistry:
    """
    Process-wide font registry.

    Constructed once at startup and handed to the layout engine and the
    rasterizer. Assets are loaded lazily on first use, exactly once, under a
    lock. A family whose asset is missing or unreadable is skipped; layers
    asking for it get the fallback family instead.
    """

    def __init__(self, fonts_dir, families=None, fallback_family=FALLBACK_FONT_FAMILY,
                 fallback_file=FALLBACK_FONT_FILE):
        self.fonts_dir = fonts_dir
        self.families = dict(FONT_FAMILIES if families is None else families)
        self.fallback_family = fallback_family
        self.fallback_file = fallback_file

        self._lock = threading.Lock()
        self._loaded = False
        self._paths = {}
        self._cache = {}
        self.substitutions = 0

    @property
    def loaded(self):
        return self._loaded

    @property
    def registered_families(self):
        self.ensure_loaded()
        return sorted(self._paths)

    def _find_asset(self, filename):
        # Assets may be nested per family (static/fonts/<Family>/<file>.ttf)
        direct = os.path.join(self.fonts_dir, filename)
        if os.path.isfile(direct):
            return direct
        for root, _dirs, files in os.walk(self.fonts_dir):
            if filename in files:
                return os.path.join(root, filename)
        return None

    def _register(self, family, filename):
        path = self._find_asset(filename)
        if path is None:
            logger.warning(f"[Fonts] Asset for '{family}' not found: {filename}")
            return
        if os.path.getsize(path) == 0:
            logger.warning(f"[Fonts] Asset for '{family}' is empty: {path}")
            return
        try:
            ImageFont.truetype(path, 12)
        except OSError as e:
            logger.warning(f"[Fonts] Asset for '{family}' is unreadable ({path}): {e}")
            return
        self._paths[family] = path

    def ensure_loaded(self):
        """Register every known family. Safe to call from any thread, any number of times."""
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            if not os.path.isdir(self.fonts_dir):
                logger.warning(f"[Fonts] Font directory missing: {self.fonts_dir}")
            else:
                for family, filename in self.families.items():
                    self._register(family, filename)
                if self.fallback_family not in self._paths:
                    self._register(self.fallback_family, self.fallback_file)

            logger.info(f"[Fonts] Registered {len(self._paths)} font families: {sorted(self._paths)}")
            self._loaded = True

    def resolve_family(self, name):
        """
        Exact registered family for `name`, else the fallback family.

        Matching is case-sensitive against the canonical authoring-tool names.
        Every substitution is logged and counted.
        """
        self.ensure_loaded()
        if name in self._paths:
            return name

        with self._lock:
            self.substitutions += 1
        logger.warning(
            f"[Fonts] Family '{name}' unavailable, substituting '{self.fallback_family}'",
            extra={"event": "font-substituted"},
        )
        return self.fallback_family

    def get_font(self, family, size_px):
        """Cached FreeTypeFont for a resolved family at a pixel size."""
        self.ensure_loaded()
        size_px = max(1, int(size_px))
        key = (family, size_px)

        font = self._cache.get(key)
        if font is not None:
            return font

        path = self._paths.get(family) or self._paths.get(self.fallback_family)
        if path:
            font = ImageFont.truetype(path, size_px)
        else:
            # No asset at all: Pillow's bundled scalable font keeps rendering unblocked
            font = ImageFont.load_default(size=size_px)

        with self._lock:
            self._cache.setdefault(key, font)
        return self._cache[key]
