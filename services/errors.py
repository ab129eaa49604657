"""
Fulfillment error taxonomy.

Every pipeline component raises one of these. Each error carries the stage it
belongs to, a machine-readable `kind`, and whether the failure is transient.
The orchestrator is the only place that catches them and decides between
retrying and failing the run; it never inspects message text.
"""
from constants import (
    STAGE_VALIDATION,
    STAGE_RENDER,
    STAGE_STORAGE,
    STAGE_RESOLUTION,
    STAGE_SUBMISSION,
)


class FulfillmentError(Exception):
    """Base exception for pipeline failures."""
    stage = "unknown"
    kind = "error"
    retryable = False

    def __init__(self, message, *, kind=None, retryable=None, context=None):
        self.message = message
        if kind is not None:
            self.kind = kind
        if retryable is not None:
            self.retryable = retryable
        self.context = dict(context or {})
        super().__init__(message)

    def to_dict(self):
        return {
            "stage": self.stage,
            "kind": self.kind,
            "reason": self.message,
            "retryable": self.retryable,
        }


class ValidationError(FulfillmentError):
    """Malformed layout snapshot. Never retried."""
    stage = STAGE_VALIDATION
    kind = "invalid-snapshot"

    def __init__(self, errors, context=None):
        self.errors = list(errors)
        super().__init__(
            f"Snapshot validation failed: {'; '.join(self.errors)}",
            context=context,
        )


class RenderError(FulfillmentError):
    """Font, layout or raster failure. Not retried automatically."""
    stage = STAGE_RENDER
    kind = "render-failed"


class StorageError(FulfillmentError):
    """Object storage fault. Transient by default."""
    stage = STAGE_STORAGE
    kind = "storage-unavailable"
    retryable = True


class ResolutionError(FulfillmentError):
    """
    No strategy could map the order-line hints to a catalog variant.

    Carries the hints that were present and each strategy's failure reason so
    the report can be acted on by hand.
    """
    stage = STAGE_RESOLUTION
    kind = "unresolvable-variant"

    def __init__(self, hints, attempts, context=None):
        self.hints = dict(hints)
        self.attempts = list(attempts)
        present = ", ".join(f"{k}={v!r}" for k, v in self.hints.items()) or "none"
        reasons = "; ".join(f"{a.method}: {a.reason}" for a in self.attempts)
        super().__init__(
            f"Could not resolve catalog variant (hints present: {present}). Strategies: {reasons}",
            context=context,
        )


class SubmissionError(FulfillmentError):
    """
    Partner order submission failure.

    kind is one of:
    - "partner-unavailable": network fault or 5xx/429 (retryable)
    - "rejected": 4xx, malformed order payload (terminal)
    - "variant-mismatch": 4xx naming the variant after resolution claimed success (terminal)
    """
    stage = STAGE_SUBMISSION
    kind = "rejected"

    def __init__(self, message, *, kind="rejected", retryable=False, status=None, context=None):
        self.status = status
        super().__init__(message, kind=kind, retryable=retryable, context=context)


class CatalogError(FulfillmentError):
    """Catalog lookup failed for a reason other than "not found"."""
    stage = STAGE_RESOLUTION
    kind = "catalog-unavailable"
    retryable = True
