"""Catalog helpers & legacy SKU mapping.

Single source of truth for:
- Legacy storefront SKU -> catalog variant ID table
- Optional JSON mapping file merged over it
- Colour / size normalization used when matching catalog variants
"""
import json
import logging
import re

logger = logging.getLogger(__name__)

# --- Legacy SKU Table ---

# Storefront SKUs created before catalog IDs were carried on line items.
# Bella+Canvas 3001 (catalog product 71).
LEGACY_SKU_VARIANT_MAP = {
    "17008_Black": 3990245,
    "17008_Black_S": 3990245,
    "17008_Black_M": 3990246,
    "17008_Black_L": 3990247,
    "17008_Black_XL": 3990248,
    "17008_White": 4011,
    "17008_White_S": 4011,
    "17008_White_M": 4012,
    "17008_White_L": 4013,
    "17008_White_XL": 4014,
}

MAPPING_FILE_KEY = "shopify_to_printful_variants"

_TITLE_SEPARATOR_RE = re.compile(r"\s*/\s*")
_WHITESPACE_RE = re.compile(r"\s+")


def _is_annotation_key(key):
    return key.startswith("_") or key.startswith("comment")


def load_variant_mapping(path=None):
    """
    Built-in legacy table, extended by an optional JSON file.

    File format: {"shopify_to_printful_variants": {"<sku>": <variant_id>, ...}}
    Keys starting with "_" or "comment" are annotations and ignored. A
    missing or malformed file leaves the built-in table in effect.
    """
    mapping = dict(LEGACY_SKU_VARIANT_MAP)
    if not path:
        return mapping

    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except FileNotFoundError:
        logger.warning(f"[Catalog] Variant mapping file not found: {path}")
        return mapping
    except (OSError, ValueError) as e:
        logger.error(f"[Catalog] Could not read variant mapping file {path}: {e}")
        return mapping

    entries = doc.get(MAPPING_FILE_KEY, {}) if isinstance(doc, dict) else {}
    loaded = 0
    for sku, variant_id in entries.items():
        if _is_annotation_key(sku):
            continue
        try:
            mapping[sku] = int(variant_id)
            loaded += 1
        except (TypeError, ValueError):
            logger.warning(f"[Catalog] Ignoring non-numeric mapping {sku!r} -> {variant_id!r}")

    logger.info(f"[Catalog] Loaded {loaded} SKU mappings from {path}")
    return mapping


# --- Normalization ---

def normalize_color(value):
    """Case- and whitespace-insensitive colour key ("Heather Grey" -> "heathergrey")."""
    return _WHITESPACE_RE.sub("", str(value or "")).lower()


def normalize_size(value):
    return str(value or "").strip().upper()


def parse_variant_title(title):
    """
    Split a storefront variant title into (color, size).

    "Black / S" -> ("Black", "S"). Returns None for titles that do not
    have exactly two non-empty parts.
    """
    if not title:
        return None
    parts = _TITLE_SEPARATOR_RE.split(str(title).strip())
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def find_variant_id(variants, color, size):
    """Catalog variant ID among `variants` matching colour and size, else None."""
    wanted = (normalize_color(color), normalize_size(size))
    for variant in variants:
        if (normalize_color(variant.get("color")), normalize_size(variant.get("size"))) == wanted:
            return variant.get("id")
    return None
