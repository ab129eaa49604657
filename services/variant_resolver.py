"""
Variant Resolver: storefront line-item hints -> partner catalog variant ID.

Strategies run in a fixed order and the first hit wins, so conflicting
hints always resolve by the same precedence:

1. direct-id                 variantId confirmed by the catalog        (1.0)
2. sku-mapping-table         legacy SKU table                          (0.95)
3. catalog-lookup-fallback   "<digits>_<suffix>" SKU, digits confirmed (0.9)
4. title-parse               "<Color> / <Size>" on the base product    (0.8)
5. property-parse            Color / Size properties on the base product (0.7)
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from constants import (
    RESOLUTION_DIRECT_ID,
    RESOLUTION_SKU_MAPPING_TABLE,
    RESOLUTION_CATALOG_LOOKUP_FALLBACK,
    RESOLUTION_TITLE_PARSE,
    RESOLUTION_PROPERTY_PARSE,
    CATALOG_VARIANT_ID_MIN_DIGITS,
)
from services.errors import ResolutionError
from services.print_catalog import parse_variant_title, find_variant_id

logger = logging.getLogger(__name__)

_SKU_PREFIX_RE = re.compile(r"^(\d+)_(.+)$")

_HINT_ALIASES = {
    "variant_id": ("variant_id", "variantId"),
    "sku": ("sku",),
    "variant_title": ("variant_title", "variantTitle"),
    "properties": ("properties",),
    "base_product_id": ("base_product_id", "baseProductId"),
}


def _as_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class VariantHints:
    variant_id: Optional[int] = None
    sku: Optional[str] = None
    variant_title: Optional[str] = None
    properties: dict = field(default_factory=dict)
    base_product_id: Optional[int] = None

    @classmethod
    def from_dict(cls, raw):
        """Accepts camelCase or snake_case keys. Unknown keys are ignored."""
        if isinstance(raw, cls):
            return raw
        raw = raw or {}

        values = {}
        for name, aliases in _HINT_ALIASES.items():
            for alias in aliases:
                if raw.get(alias) not in (None, ""):
                    values[name] = raw[alias]
                    break

        properties = values.get("properties") or {}
        if isinstance(properties, list):
            # Storefront payloads carry [{"name": ..., "value": ...}]
            properties = {p.get("name"): p.get("value") for p in properties if isinstance(p, dict)}

        return cls(
            variant_id=_as_int(values.get("variant_id")),
            sku=str(values["sku"]).strip() if values.get("sku") else None,
            variant_title=str(values["variant_title"]).strip() if values.get("variant_title") else None,
            properties=dict(properties),
            base_product_id=_as_int(values.get("base_product_id")),
        )

    def to_dict(self):
        """Only the hints that are present."""
        out = {}
        if self.variant_id is not None:
            out["variantId"] = self.variant_id
        if self.sku:
            out["sku"] = self.sku
        if self.variant_title:
            out["variantTitle"] = self.variant_title
        if self.properties:
            out["properties"] = dict(self.properties)
        if self.base_product_id is not None:
            out["baseProductId"] = self.base_product_id
        return out

    def property_value(self, name):
        for key, value in self.properties.items():
            if str(key).strip().lower() == name.lower() and value not in (None, ""):
                return str(value)
        return None


@dataclass(frozen=True)
class VariantResolution:
    resolved_variant_id: int
    resolution_method: str
    confidence: float


@dataclass(frozen=True)
class StrategyAttempt:
    method: str
    resolution: Optional[VariantResolution]
    reason: str = ""


class MemoizedCatalog:
    """Per-resolution cache in front of the catalog. Never shared across calls."""

    def __init__(self, catalog):
        self.catalog = catalog
        self._variants = {}
        self._products = {}

    def get_variant(self, variant_id):
        if variant_id not in self._variants:
            self._variants[variant_id] = self.catalog.get_variant(variant_id)
        return self._variants[variant_id]

    def get_product_variants(self, product_id):
        if product_id not in self._products:
            self._products[product_id] = self.catalog.get_product_variants(product_id)
        return self._products[product_id]


class ResolutionStrategy(ABC):
    method = None
    confidence = 0.0

    def hit(self, variant_id, reason=""):
        return StrategyAttempt(self.method, VariantResolution(int(variant_id), self.method, self.confidence), reason)

    def miss(self, reason):
        return StrategyAttempt(self.method, None, reason)

    @abstractmethod
    def try_resolve(self, hints, catalog) -> StrategyAttempt:
        pass


class DirectIdStrategy(ResolutionStrategy):
    method = RESOLUTION_DIRECT_ID
    confidence = 1.0

    def try_resolve(self, hints, catalog):
        if hints.variant_id is None:
            return self.miss("no variantId hint")
        if catalog.get_variant(hints.variant_id) is None:
            return self.miss(f"variantId {hints.variant_id} not found in catalog")
        return self.hit(hints.variant_id)


class SkuMappingStrategy(ResolutionStrategy):
    method = RESOLUTION_SKU_MAPPING_TABLE
    confidence = 0.95

    def __init__(self, mapping):
        self.mapping = dict(mapping)

    def try_resolve(self, hints, catalog):
        if not hints.sku:
            return self.miss("no sku hint")
        variant_id = self.mapping.get(hints.sku)
        if variant_id is None:
            return self.miss(f"sku {hints.sku!r} not in mapping table")
        return self.hit(variant_id)


class CatalogLookupStrategy(ResolutionStrategy):
    method = RESOLUTION_CATALOG_LOOKUP_FALLBACK
    confidence = 0.9

    def try_resolve(self, hints, catalog):
        if not hints.sku:
            return self.miss("no sku hint")
        match = _SKU_PREFIX_RE.match(hints.sku)
        if not match:
            return self.miss(f"sku {hints.sku!r} is not <digits>_<suffix>")
        digits = match.group(1)
        if len(digits) < CATALOG_VARIANT_ID_MIN_DIGITS:
            return self.miss(f"sku prefix {digits!r} shorter than {CATALOG_VARIANT_ID_MIN_DIGITS} digits")
        if catalog.get_variant(int(digits)) is None:
            return self.miss(f"sku prefix {digits} not found in catalog")
        return self.hit(int(digits))


class _ColorSizeStrategy(ResolutionStrategy):
    def __init__(self, default_base_product_id=None):
        self.default_base_product_id = default_base_product_id

    def match(self, hints, catalog, color, size):
        product_id = hints.base_product_id or self.default_base_product_id
        if product_id is None:
            return self.miss("no base product to match against")
        variant_id = find_variant_id(catalog.get_product_variants(product_id), color, size)
        if variant_id is None:
            return self.miss(f"no variant of product {product_id} with color {color!r} and size {size!r}")
        return self.hit(variant_id)


class TitleParseStrategy(_ColorSizeStrategy):
    method = RESOLUTION_TITLE_PARSE
    confidence = 0.8

    def try_resolve(self, hints, catalog):
        if not hints.variant_title:
            return self.miss("no variantTitle hint")
        parsed = parse_variant_title(hints.variant_title)
        if parsed is None:
            return self.miss(f"variantTitle {hints.variant_title!r} is not '<Color> / <Size>'")
        return self.match(hints, catalog, *parsed)


class PropertyParseStrategy(_ColorSizeStrategy):
    method = RESOLUTION_PROPERTY_PARSE
    confidence = 0.7

    def try_resolve(self, hints, catalog):
        color = hints.property_value("Color") or hints.property_value("Colour")
        size = hints.property_value("Size")
        if not color or not size:
            return self.miss("no Color and Size properties")
        return self.match(hints, catalog, color, size)


def default_strategies(mapping, default_base_product_id=None):
    return [
        DirectIdStrategy(),
        SkuMappingStrategy(mapping),
        CatalogLookupStrategy(),
        TitleParseStrategy(default_base_product_id),
        PropertyParseStrategy(default_base_product_id),
    ]


class VariantResolver:
    def __init__(self, catalog, strategies):
        self.catalog = catalog
        self.strategies = list(strategies)

    def resolve(self, hints, context=None):
        """
        First successful strategy wins.

        Raises:
            ResolutionError: every strategy missed
            CatalogError: a catalog lookup failed for a reason other than 404
        """
        hints = VariantHints.from_dict(hints)
        catalog = MemoizedCatalog(self.catalog)

        attempts = []
        for strategy in self.strategies:
            attempt = strategy.try_resolve(hints, catalog)
            attempts.append(attempt)
            if attempt.resolution is not None:
                logger.info(
                    f"[Resolver] Resolved variant {attempt.resolution.resolved_variant_id} "
                    f"via {attempt.method}",
                    extra=dict(context or {}),
                )
                return attempt.resolution
            logger.debug(f"[Resolver] {attempt.method} missed: {attempt.reason}")

        raise ResolutionError(hints.to_dict(), attempts, context=context)
