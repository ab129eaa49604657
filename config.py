"""
Service configuration, read once from the environment at import.

Hosted stages (staging, production) refuse to boot on settings that would
lose orders or hand the partner unreachable print files.
"""
import os
import logging

from utils.env import get_env_str, get_env_bool, get_env_int, get_env_float

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

_STAGE_ALIASES = {
    "prod": "production",
    "production": "production",
    "stage": "staging",
    "staging": "staging",
    "test": "test",
    "testing": "test",
}


def _normalize_stage(raw: str) -> str:
    return _STAGE_ALIASES.get((raw or "").strip().lower(), "dev")


# .env is a local-dev convenience only: hosted platforms inject real variables
# and tests must not pick up a developer's secrets.
_HOSTED = bool(os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("RAILWAY_PROJECT_ID"))
if not _HOSTED and _normalize_stage(os.getenv("APP_STAGE")) != "test":
    from dotenv import load_dotenv
    load_dotenv(dotenv_path=os.path.join(BASE_DIR, ".env"), override=False)

# -----------------------------------------------------------------------------
# Stage
# -----------------------------------------------------------------------------
APP_STAGE = _normalize_stage(os.getenv("APP_STAGE", "dev"))

IS_TEST = APP_STAGE == "test"
IS_STAGING = APP_STAGE == "staging"
IS_PRODUCTION = APP_STAGE == "production"

# -----------------------------------------------------------------------------
# Instance / Asset Paths
# -----------------------------------------------------------------------------
INSTANCE_DIR = get_env_str("INSTANCE_DIR", default=os.path.join(BASE_DIR, "instance"))
ARTIFACTS_DIR = os.path.join(INSTANCE_DIR, "artifacts")

FONTS_DIR = get_env_str("FONTS_DIR", default=os.path.join(BASE_DIR, "static", "fonts"))

# Optional JSON file extending the built-in legacy SKU -> catalog variant table
VARIANT_MAPPING_PATH = get_env_str("VARIANT_MAPPING_PATH", default=None)

# -----------------------------------------------------------------------------
# URLs
# -----------------------------------------------------------------------------
def _strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


BASE_URL = _strip_trailing_slash(get_env_str("BASE_URL", default="http://localhost:5000"))

# Public base URL the partner downloads print files from. Empty = derive from backend.
ASSET_BASE_URL = _strip_trailing_slash(get_env_str("ASSET_BASE_URL", default=""))

# -----------------------------------------------------------------------------
# Storage Backend
# -----------------------------------------------------------------------------
STORAGE_BACKEND = get_env_str("STORAGE_BACKEND", default="local").strip().lower()

if IS_PRODUCTION and STORAGE_BACKEND != "s3":
    raise RuntimeError("CRITICAL: STORAGE_BACKEND must be 's3' in production.")

if IS_STAGING and STORAGE_BACKEND != "s3":
    logger.warning("[Config] WARNING: STORAGE_BACKEND is not 's3' in staging. Print files will not be reachable by the partner.")

S3_BUCKET = get_env_str("S3_BUCKET", default="")
S3_PREFIX = get_env_str("S3_PREFIX", default="")

_region = get_env_str("AWS_REGION", default="us-east-1")
if " " in _region or not _region.replace("-", "").isalnum():
    logger.warning(f"[Config] WARNING: Invalid AWS_REGION detected: '{_region}'. Defaulting to 'us-east-1'.")
    _region = "us-east-1"
AWS_REGION = _region

if STORAGE_BACKEND == "s3" and not S3_BUCKET:
    raise RuntimeError("CRITICAL: S3_BUCKET must be set when STORAGE_BACKEND=s3.")

# -----------------------------------------------------------------------------
# Printful (manufacturing partner)
# -----------------------------------------------------------------------------
PRINTFUL_API_KEY = get_env_str("PRINTFUL_API_KEY", default="")
PRINTFUL_STORE_ID = get_env_str("PRINTFUL_STORE_ID", default="")
PRINTFUL_BASE_URL = _strip_trailing_slash(get_env_str("PRINTFUL_BASE_URL", default="https://api.printful.com"))
PRINTFUL_TIMEOUT_SECONDS = get_env_float("PRINTFUL_TIMEOUT_SECONDS", default=45.0)
PRINTFUL_SHIPPING_METHOD = get_env_str("PRINTFUL_SHIPPING_METHOD", default="STANDARD")

# Draft orders are only confirmed (charged + sent to production) when explicitly enabled
PRINTFUL_AUTO_CONFIRM = get_env_bool("PRINTFUL_AUTO_CONFIRM", default=False)

if (IS_STAGING or IS_PRODUCTION) and not PRINTFUL_API_KEY:
    raise ValueError(f"PRINTFUL_API_KEY must be set in {APP_STAGE} environment.")

if IS_STAGING and PRINTFUL_AUTO_CONFIRM:
    raise ValueError("SAFETY RAIL: PRINTFUL_AUTO_CONFIRM is forbidden in staging.")

# Catalog product used to match "<Color> / <Size>" hints when the line item carries none
DEFAULT_BASE_PRODUCT_ID = get_env_int("DEFAULT_BASE_PRODUCT_ID", default=None)

# -----------------------------------------------------------------------------
# Run Records
# -----------------------------------------------------------------------------
# "storage" keeps a JSON record per line item next to the print files so a
# restart does not forget which lines the partner already holds
RUN_STORE_BACKEND = get_env_str("RUN_STORE_BACKEND", default="storage").lower()
RUN_RETENTION_SECONDS = get_env_int("RUN_RETENTION_SECONDS", default=3600)

if RUN_STORE_BACKEND not in ("memory", "storage"):
    raise ValueError(f"RUN_STORE_BACKEND must be 'memory' or 'storage', got '{RUN_STORE_BACKEND}'.")

if (IS_STAGING or IS_PRODUCTION) and RUN_STORE_BACKEND != "storage":
    logger.warning("[Config] WARNING: RUN_STORE_BACKEND=memory outside dev. A restart forgets submitted lines.")

# -----------------------------------------------------------------------------
# Retry Policy
# -----------------------------------------------------------------------------
STORAGE_MAX_ATTEMPTS = get_env_int("STORAGE_MAX_ATTEMPTS", default=3)
PARTNER_MAX_ATTEMPTS = get_env_int("PARTNER_MAX_ATTEMPTS", default=3)
RETRY_BASE_DELAY_SECONDS = get_env_float("RETRY_BASE_DELAY_SECONDS", default=0.5)
RETRY_MAX_DELAY_SECONDS = get_env_float("RETRY_MAX_DELAY_SECONDS", default=8.0)

if STORAGE_MAX_ATTEMPTS < 1 or PARTNER_MAX_ATTEMPTS < 1:
    raise ValueError("STORAGE_MAX_ATTEMPTS and PARTNER_MAX_ATTEMPTS must be at least 1.")

# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------
# 12x16in at 300 DPI is 17.3M pixels; anything far beyond that is a malformed snapshot
MAX_RENDER_PIXELS = get_env_int("MAX_RENDER_PIXELS", default=60_000_000)

# -----------------------------------------------------------------------------
# Webhook Ingress
# -----------------------------------------------------------------------------
SHOPIFY_WEBHOOK_SECRET = get_env_str("SHOPIFY_WEBHOOK_SECRET", default="")

if (IS_STAGING or IS_PRODUCTION) and not SHOPIFY_WEBHOOK_SECRET:
    raise ValueError(f"SHOPIFY_WEBHOOK_SECRET must be set in {APP_STAGE} environment.")
