# Fulfillment Run States
RUN_STATE_RECEIVED = "received"
RUN_STATE_VALIDATED = "validated"
RUN_STATE_RENDERED = "rendered"
RUN_STATE_STORED = "stored"
RUN_STATE_VARIANT_RESOLVED = "variant-resolved"
RUN_STATE_SUBMITTED = "submitted"
RUN_STATE_CONFIRMED = "confirmed"
RUN_STATE_FAILED = "failed"

# Happy-path order. `failed` is reachable from every non-terminal state.
RUN_STATE_SEQUENCE = (
    RUN_STATE_RECEIVED,
    RUN_STATE_VALIDATED,
    RUN_STATE_RENDERED,
    RUN_STATE_STORED,
    RUN_STATE_VARIANT_RESOLVED,
    RUN_STATE_SUBMITTED,
    RUN_STATE_CONFIRMED,
)

TERMINAL_RUN_STATES = frozenset({RUN_STATE_CONFIRMED, RUN_STATE_FAILED})

# Runs in these states must never be re-rendered or re-submitted
SUBMITTED_RUN_STATES = frozenset({RUN_STATE_SUBMITTED, RUN_STATE_CONFIRMED})

# Pipeline stages (failure attribution)
STAGE_VALIDATION = "validation"
STAGE_RENDER = "render"
STAGE_STORAGE = "storage"
STAGE_RESOLUTION = "resolution"
STAGE_SUBMISSION = "submission"
STAGE_CONFIRMATION = "confirmation"

# Layout Snapshot Schema
SNAPSHOT_VERSION = 2
SNAPSHOT_ORIGIN = "top-left"
TEXT_ORIENTATION_UPRIGHT = "upright"
HYPHEN_POLICY_JP_LONG_VBAR = "jp-long-vbar"
ANCHOR_CENTER_BASELINE = "center-baseline"
ORIENTATIONS = ("horizontal", "vertical")

# Long vowel marks and dashes that turn into a vertical bar in upright vertical text
JP_LONG_VBAR_SOURCE_CHARS = "ー-‒–—−﹘﹣－"
JP_LONG_VBAR_GLYPH = "｜"

# Fonts: authoring-tool family name -> asset filename (under FONTS_DIR)
FONT_FAMILIES = {
    "Yuji Syuku": "YujiSyuku-Regular.ttf",
    "Shippori Antique": "ShipporiAntique-Regular.ttf",
    "Huninn": "Huninn-Regular.ttf",
    "Rampart One": "RampartOne-Regular.ttf",
    "Cherry Bomb One": "CherryBombOne-Regular.ttf",
}

# CJK-capable fallback used for any unknown or unloadable family
FALLBACK_FONT_FAMILY = "Noto Sans JP"
FALLBACK_FONT_FILE = "NotoSansJP-Regular.ttf"

# CSS reference resolution used by the authoring tool
CSS_PX_PER_INCH = 96
POINTS_PER_INCH = 72

# Artifact Storage
PRINT_KEY_TEMPLATE = "orders/order-{order_id}-item-{line_item_id}/{content_hash}/print.png"
PRINT_CONTENT_TYPE = "image/png"
PRINT_CACHE_CONTROL = "public, max-age=31536000, immutable"
CONTENT_HASH_LENGTH = 8

# Variant Resolution Methods
RESOLUTION_DIRECT_ID = "direct-id"
RESOLUTION_SKU_MAPPING_TABLE = "sku-mapping-table"
RESOLUTION_CATALOG_LOOKUP_FALLBACK = "catalog-lookup-fallback"
RESOLUTION_TITLE_PARSE = "title-parse"
RESOLUTION_PROPERTY_PARSE = "property-parse"

# Minimum digits for a SKU prefix to be treated as a catalog variant ID
CATALOG_VARIANT_ID_MIN_DIGITS = 6

# Partner API
PRINTFUL_MAX_PAGE_LIMIT = 100
PRINTFUL_DRAFT_STATUS = "draft"

# Storefront line-item properties
SNAPSHOT_PROPERTY_NAME = "_layout_snapshot_v2"
CATALOG_VARIANT_PROPERTY_NAME = "_pf_catalog_variant_id"
BASE_PRODUCT_PROPERTY_NAME = "_pf_product_id"

# Run Records (durable idempotency)
RUN_RECORD_KEY_TEMPLATE = "runs/order-{order_id}-item-{line_item_id}.json"
RUN_RECORD_CONTENT_TYPE = "application/json"
RUN_RECORD_CACHE_CONTROL = "no-store"
