"""
Fulfillment Orchestrator

Drives one order line through:
1. Validate the layout snapshot
2. Lay out + rasterize the print file
3. Store it (content-addressed)
4. Resolve the catalog variant
5. Submit the line item to the partner
6. Confirm the partner order

Idempotent per (order_id, line_item_id): a confirmed line returns its stored
result, a submitted line only retries confirmation, a line that failed after
submission re-reports that failure, anything else starts over. Failures
become a FulfillmentResult; only programming errors raise.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Optional

from constants import (
    RUN_STATE_RECEIVED,
    RUN_STATE_VALIDATED,
    RUN_STATE_RENDERED,
    RUN_STATE_STORED,
    RUN_STATE_VARIANT_RESOLVED,
    RUN_STATE_SUBMITTED,
    RUN_STATE_CONFIRMED,
    RUN_STATE_FAILED,
    STAGE_VALIDATION,
    STAGE_RENDER,
    STAGE_STORAGE,
    STAGE_RESOLUTION,
    STAGE_SUBMISSION,
    STAGE_CONFIRMATION,
)
from services.errors import FulfillmentError, StorageError
from services.printing.layout import layout_snapshot
from services.printing.rasterizer import Rasterizer
from services.printing.validation import parse_snapshot
from services.variant_resolver import VariantHints

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt):
        """Delay before attempt `attempt + 1`."""
        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))


@dataclass
class FulfillmentRequest:
    order_id: str
    line_item_id: str
    raw_snapshot: object
    variant_hints: dict = field(default_factory=dict)
    quantity: int = 1
    recipient: Optional[dict] = None


@dataclass(frozen=True)
class FulfillmentResult:
    ok: bool
    order_id: str
    line_item_id: str
    state: str
    artifact_url: Optional[str] = None
    resolved_variant_id: Optional[int] = None
    resolution_method: Optional[str] = None
    partner_order_id: Optional[int] = None
    stage: Optional[str] = None
    kind: Optional[str] = None
    reason: Optional[str] = None
    retryable: bool = False
    memoized: bool = False
    context: dict = field(default_factory=dict)

    def to_dict(self):
        out = {
            "ok": self.ok,
            "orderId": self.order_id,
            "lineItemId": self.line_item_id,
            "state": self.state,
            "memoized": self.memoized,
            "context": self.context,
        }
        if self.ok:
            out.update({
                "artifactUrl": self.artifact_url,
                "resolvedVariantId": self.resolved_variant_id,
                "resolutionMethod": self.resolution_method,
                "partnerOrderId": self.partner_order_id,
            })
        else:
            out.update({
                "stage": self.stage,
                "kind": self.kind,
                "reason": self.reason,
                "retryable": self.retryable,
            })
            if self.partner_order_id is not None:
                out["partnerOrderId"] = self.partner_order_id
        return out


class FulfillmentOrchestrator:
    def __init__(self, fonts, artifacts, resolver, provider, runs, retry_policy=None,
                 sleep=asyncio.sleep, storage_retry_policy=None, rasterizer=None):
        self.fonts = fonts
        self.artifacts = artifacts
        self.resolver = resolver
        self.provider = provider
        self.runs = runs
        self.retry_policy = retry_policy or RetryPolicy()
        self.storage_retry_policy = storage_retry_policy or self.retry_policy
        self.sleep = sleep
        self.rasterizer = rasterizer or Rasterizer(fonts)

    # --- helpers ---

    @staticmethod
    def _log_extra(run, stage=None):
        return {
            "order_id": run.order_id,
            "line_item_id": run.line_item_id,
            "stage": stage,
            "run_state": run.state,
        }

    @staticmethod
    def _context(run):
        return {"hints": run.hints, "snapshotVersion": run.snapshot_version}

    async def _with_retry(self, run, stage, policy, fn, *args):
        """Run a blocking call off the loop, retrying retryable FulfillmentErrors."""
        attempt = 1
        while True:
            try:
                return await asyncio.to_thread(fn, *args)
            except FulfillmentError as e:
                run.attempts = attempt
                if not e.retryable or attempt >= policy.max_attempts:
                    if e.retryable:
                        e.message = f"{e.message} (gave up after {attempt} attempts)"
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"[Fulfillment] {stage} attempt {attempt}/{policy.max_attempts} failed ({e.kind}): "
                    f"{e.message}. Retrying in {delay:.2f}s",
                    extra=self._log_extra(run, stage),
                )
                await self.sleep(delay)
                attempt += 1

    def _render(self, snapshot):
        layout = layout_snapshot(snapshot, self.fonts)
        return self.rasterizer.render_layout(layout)

    def _failure(self, run, stage, error, keep_state=False):
        if not keep_state:
            run.fail(stage, error.kind, error.message)
        logger.error(
            f"[Fulfillment] Line {run.order_id}/{run.line_item_id} failed at {stage} ({error.kind}): {error.message}",
            extra=self._log_extra(run, stage),
        )
        run.result = FulfillmentResult(
            ok=False,
            order_id=run.order_id,
            line_item_id=run.line_item_id,
            state=run.state,
            artifact_url=run.artifact.public_url if run.artifact else None,
            partner_order_id=run.submission.partner_order_id if run.submission else None,
            stage=stage,
            kind=error.kind,
            reason=error.message,
            retryable=error.retryable,
            context=self._context(run),
        )
        return run.result

    # --- stages ---

    async def _confirm(self, run):
        try:
            order = await self._with_retry(
                run, STAGE_CONFIRMATION, self.retry_policy,
                self.provider.confirm, run.submission.partner_order_id,
            )
        except FulfillmentError as e:
            # A transient confirm failure leaves the run submitted so the next delivery only confirms
            return self._failure(run, STAGE_CONFIRMATION, e, keep_state=e.retryable)

        run.partner_order = order
        run.transition(RUN_STATE_CONFIRMED)
        run.result = FulfillmentResult(
            ok=True,
            order_id=run.order_id,
            line_item_id=run.line_item_id,
            state=run.state,
            artifact_url=run.artifact.public_url,
            resolved_variant_id=run.resolution.resolved_variant_id,
            resolution_method=run.resolution.resolution_method,
            partner_order_id=run.submission.partner_order_id,
            context=self._context(run),
        )
        logger.info(
            f"[Fulfillment] Line {run.order_id}/{run.line_item_id} confirmed "
            f"(partner order {run.submission.partner_order_id})",
            extra=self._log_extra(run, STAGE_CONFIRMATION),
        )
        return run.result

    async def _run_pipeline(self, run, request):
        hints = VariantHints.from_dict(request.variant_hints)
        run.hints = hints.to_dict()
        stage = None

        try:
            stage = STAGE_VALIDATION
            snapshot = parse_snapshot(request.raw_snapshot)
            run.snapshot_version = snapshot.version
            run.transition(RUN_STATE_VALIDATED)

            stage = STAGE_RENDER
            png = self._render(snapshot)
            run.transition(RUN_STATE_RENDERED)

            stage = STAGE_STORAGE
            run.artifact = await self._with_retry(
                run, stage, self.storage_retry_policy,
                self.artifacts.store, png, run.order_id, run.line_item_id,
            )
            run.transition(RUN_STATE_STORED)

            stage = STAGE_RESOLUTION
            run.resolution = await self._with_retry(
                run, stage, self.retry_policy,
                self.resolver.resolve, hints, {"order_id": run.order_id, "line_item_id": run.line_item_id},
            )
            run.transition(RUN_STATE_VARIANT_RESOLVED)

            stage = STAGE_SUBMISSION
            run.submission = await self._with_retry(
                run, stage, self.retry_policy,
                self.provider.submit_line_item,
                run.order_id, run.line_item_id, run.resolution.resolved_variant_id,
                run.artifact.public_url, request.quantity, request.recipient,
            )
            run.transition(RUN_STATE_SUBMITTED)
            # The partner now holds this line; record that before anything else can fail
            await self.runs.checkpoint(run)
        except FulfillmentError as e:
            return self._failure(run, stage, e)

        logger.info(
            f"[Fulfillment] Line {run.order_id}/{run.line_item_id} submitted to partner order "
            f"{run.submission.partner_order_id} (variant {run.resolution.resolved_variant_id} "
            f"via {run.resolution.resolution_method})",
            extra=self._log_extra(run, STAGE_SUBMISSION),
        )
        return await self._confirm(run)

    async def fulfill(self, request):
        """
        Fulfill one order line. Never raises for pipeline failures.
        """
        try:
            async with self.runs.session(request.order_id, request.line_item_id) as run:
                return await self._fulfill_locked(run, request)
        except StorageError as e:
            # Run record unreadable: the line's prior outcome is unknown, so do nothing
            logger.error(
                f"[Fulfillment] Line {request.order_id}/{request.line_item_id} skipped: {e.message}",
                extra={"order_id": request.order_id, "line_item_id": request.line_item_id, "stage": STAGE_STORAGE},
            )
            return FulfillmentResult(
                ok=False,
                order_id=str(request.order_id),
                line_item_id=str(request.line_item_id),
                state=RUN_STATE_RECEIVED,
                stage=STAGE_STORAGE,
                kind=e.kind,
                reason=e.message,
                retryable=e.retryable,
            )

    async def _fulfill_locked(self, run, request):
        if run.state == RUN_STATE_CONFIRMED:
            logger.info(
                f"[Fulfillment] Line {run.order_id}/{run.line_item_id} already confirmed; returning stored result",
                extra=self._log_extra(run),
            )
            return replace(run.result, memoized=True)

        if run.state == RUN_STATE_SUBMITTED:
            logger.info(
                f"[Fulfillment] Line {run.order_id}/{run.line_item_id} already submitted; resuming at confirmation",
                extra=self._log_extra(run, STAGE_CONFIRMATION),
            )
            return await self._confirm(run)

        if run.was_submitted:
            # Failed after the partner accepted it: resubmitting would duplicate the order
            logger.warning(
                f"[Fulfillment] Line {run.order_id}/{run.line_item_id} failed after submission to partner order "
                f"{run.submission.partner_order_id}; returning stored failure",
                extra=self._log_extra(run),
            )
            return replace(run.result, memoized=True)

        if run.state == RUN_STATE_FAILED or run.history:
            run.restart()

        logger.info(
            f"[Fulfillment] Processing line {run.order_id}/{run.line_item_id}",
            extra=self._log_extra(run),
        )
        return await self._run_pipeline(run, request)

    async def fulfill_many(self, requests):
        """Fulfill independent order lines concurrently; results keep request order."""
        return list(await asyncio.gather(*(self.fulfill(r) for r in requests)))


class BackgroundLoop:
    """
    One long-lived event loop on a daemon thread.

    Web workers hand coroutines to it so every fulfillment run, and every
    per-line lock, lives on the same loop.
    """

    def __init__(self):
        self._loop = None
        self._thread = None
        self._lock = threading.Lock()

    def _ensure_started(self):
        with self._lock:
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=loop.run_forever, name="fulfillment-loop", daemon=True)
            thread.start()
            self._loop, self._thread = loop, thread
            return loop

    def run(self, coro, timeout=None):
        loop = self._ensure_started()
        return asyncio.run_coroutine_threadsafe(coro, loop).result(timeout)

    def stop(self):
        with self._lock:
            if self._loop is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            self._loop.close()
            self._loop = self._thread = None


def build_orchestrator():
    """Construct the orchestrator and its collaborators from config."""
    from config import (
        FONTS_DIR,
        VARIANT_MAPPING_PATH,
        DEFAULT_BASE_PRODUCT_ID,
        PRINTFUL_API_KEY,
        PRINTFUL_STORE_ID,
        PRINTFUL_BASE_URL,
        PRINTFUL_TIMEOUT_SECONDS,
        PRINTFUL_SHIPPING_METHOD,
        PRINTFUL_AUTO_CONFIRM,
        STORAGE_MAX_ATTEMPTS,
        PARTNER_MAX_ATTEMPTS,
        RETRY_BASE_DELAY_SECONDS,
        RETRY_MAX_DELAY_SECONDS,
    )
    from utils.storage import get_storage
    from services.artifacts import ArtifactStore
    from services.fulfillment_runs import build_run_store
    from services.fulfillment_providers.printful import PrintfulClient, PrintfulCatalog, PrintfulProvider
    from services.print_catalog import load_variant_mapping
    from services.printing.layout_utils import FontRegistry
    from services.variant_resolver import VariantResolver, default_strategies

    fonts = FontRegistry(FONTS_DIR)
    client = PrintfulClient(
        PRINTFUL_API_KEY,
        store_id=PRINTFUL_STORE_ID,
        base_url=PRINTFUL_BASE_URL,
        timeout=PRINTFUL_TIMEOUT_SECONDS,
    )
    resolver = VariantResolver(
        PrintfulCatalog(client),
        default_strategies(load_variant_mapping(VARIANT_MAPPING_PATH), DEFAULT_BASE_PRODUCT_ID),
    )
    provider = PrintfulProvider(client, shipping_method=PRINTFUL_SHIPPING_METHOD, auto_confirm=PRINTFUL_AUTO_CONFIRM)

    return FulfillmentOrchestrator(
        fonts=fonts,
        artifacts=ArtifactStore(get_storage()),
        resolver=resolver,
        provider=provider,
        runs=build_run_store(),
        retry_policy=RetryPolicy(PARTNER_MAX_ATTEMPTS, RETRY_BASE_DELAY_SECONDS, RETRY_MAX_DELAY_SECONDS),
        storage_retry_policy=RetryPolicy(STORAGE_MAX_ATTEMPTS, RETRY_BASE_DELAY_SECONDS, RETRY_MAX_DELAY_SECONDS),
    )
