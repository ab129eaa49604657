"""
Fulfillment run records and the idempotency store.

One record per (order_id, line_item_id). State changes go through
FulfillmentRun.transition(), which rejects anything outside
ALLOWED_TRANSITIONS.

A run that has ever reached `submitted` exists at the partner. It is never
restarted: later deliveries either retry confirmation or re-report the
stored outcome.

Stores:
- InMemoryRunStore: process memory. Pre-submission failures are evicted
  after `retention_seconds`; submitted and confirmed keys are kept.
- StorageRunStore: same, plus a JSON record per key in a StorageBackend,
  so the idempotency guard survives restarts. Every terminal run may be
  evicted from memory because it can be reloaded.
"""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from constants import (
    RUN_STATE_RECEIVED,
    RUN_STATE_VALIDATED,
    RUN_STATE_RENDERED,
    RUN_STATE_STORED,
    RUN_STATE_VARIANT_RESOLVED,
    RUN_STATE_SUBMITTED,
    RUN_STATE_CONFIRMED,
    RUN_STATE_FAILED,
    TERMINAL_RUN_STATES,
    SUBMITTED_RUN_STATES,
    RUN_RECORD_KEY_TEMPLATE,
    RUN_RECORD_CONTENT_TYPE,
    RUN_RECORD_CACHE_CONTROL,
)
from services.errors import StorageError
from utils.timestamps import utc_iso

logger = logging.getLogger(__name__)

# Allowed state transitions
ALLOWED_TRANSITIONS = {
    RUN_STATE_RECEIVED: [RUN_STATE_VALIDATED, RUN_STATE_FAILED],
    RUN_STATE_VALIDATED: [RUN_STATE_RENDERED, RUN_STATE_FAILED],
    RUN_STATE_RENDERED: [RUN_STATE_STORED, RUN_STATE_FAILED],
    RUN_STATE_STORED: [RUN_STATE_VARIANT_RESOLVED, RUN_STATE_FAILED],
    RUN_STATE_VARIANT_RESOLVED: [RUN_STATE_SUBMITTED, RUN_STATE_FAILED],
    RUN_STATE_SUBMITTED: [RUN_STATE_CONFIRMED, RUN_STATE_FAILED],
    RUN_STATE_CONFIRMED: [],
    RUN_STATE_FAILED: [],
}

DEFAULT_RETENTION_SECONDS = 3600


class InvalidTransition(Exception):
    """A state change outside ALLOWED_TRANSITIONS. Always a programming error."""

    def __init__(self, run_key, from_state, to_state):
        self.run_key = run_key
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Run {run_key}: invalid transition {from_state} -> {to_state}")


@dataclass
class FulfillmentRun:
    order_id: str
    line_item_id: str
    state: str = RUN_STATE_RECEIVED
    history: list = field(default_factory=list)
    hints: dict = field(default_factory=dict)
    snapshot_version: Optional[int] = None
    artifact: object = None
    resolution: object = None
    submission: object = None
    partner_order: Optional[dict] = None
    failure: Optional[dict] = None
    result: object = None
    attempts: int = 0

    @property
    def key(self):
        return (self.order_id, self.line_item_id)

    @property
    def is_terminal(self):
        return self.state in TERMINAL_RUN_STATES

    @property
    def was_submitted(self):
        """True once the partner has accepted this line, whatever happened after."""
        if self.submission is not None or self.state in SUBMITTED_RUN_STATES:
            return True
        return any(entry.get("to") == RUN_STATE_SUBMITTED for entry in self.history)

    def transition(self, new_state):
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, []):
            raise InvalidTransition(self.key, self.state, new_state)
        self.history.append({"from": self.state, "to": new_state, "at": utc_iso()})
        self.state = new_state

    def fail(self, stage, kind, reason):
        self.transition(RUN_STATE_FAILED)
        self.failure = {"stage": stage, "kind": kind, "reason": reason}

    def restart(self):
        """
        Begin a fresh attempt for a run that failed before reaching the partner.

        Raises InvalidTransition for any run that was ever submitted.
        """
        if self.was_submitted:
            raise InvalidTransition(self.key, self.state, RUN_STATE_RECEIVED)
        self.history.append({"from": self.state, "to": RUN_STATE_RECEIVED, "at": utc_iso()})
        self.state = RUN_STATE_RECEIVED
        self.failure = None
        self.artifact = None
        self.resolution = None
        self.result = None

    # --- persistence ---

    def to_dict(self):
        order = self.partner_order or {}
        return {
            "orderId": self.order_id,
            "lineItemId": self.line_item_id,
            "state": self.state,
            "history": list(self.history),
            "hints": self.hints,
            "snapshotVersion": self.snapshot_version,
            "artifact": asdict(self.artifact) if self.artifact else None,
            "resolution": asdict(self.resolution) if self.resolution else None,
            "submission": asdict(self.submission) if self.submission else None,
            # Only the reference: the full order carries the recipient address
            "partnerOrder": {"id": order.get("id"), "status": order.get("status")} if order else None,
            "failure": self.failure,
            "result": asdict(self.result) if self.result else None,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data):
        from services.artifacts import StoredArtifact
        from services.fulfillment import FulfillmentResult
        from services.fulfillment_providers import PartnerSubmission
        from services.variant_resolver import VariantResolution

        def _build(model, value):
            return model(**value) if value else None

        return cls(
            order_id=str(data["orderId"]),
            line_item_id=str(data["lineItemId"]),
            state=data["state"],
            history=list(data.get("history") or []),
            hints=dict(data.get("hints") or {}),
            snapshot_version=data.get("snapshotVersion"),
            artifact=_build(StoredArtifact, data.get("artifact")),
            resolution=_build(VariantResolution, data.get("resolution")),
            submission=_build(PartnerSubmission, data.get("submission")),
            partner_order=data.get("partnerOrder"),
            failure=data.get("failure"),
            result=_build(FulfillmentResult, data.get("result")),
            attempts=int(data.get("attempts") or 0),
        )


def run_key(order_id, line_item_id):
    return (str(order_id), str(line_item_id))


class InMemoryRunStore:
    """
    Process-local run store.

    Holds at most one record per key. Each key also gets an asyncio.Lock so
    concurrent deliveries of the same line item serialize on it. Use
    `session()` to work on a run: it takes the lock, and on exit saves the
    record and evicts expired ones.
    """

    def __init__(self, retention_seconds=DEFAULT_RETENTION_SECONDS, clock=time.monotonic):
        self.retention_seconds = retention_seconds
        self.clock = clock
        self._runs = {}
        self._locks = {}
        self._finished = {}
        self._active = {}

    def get(self, order_id, line_item_id):
        return self._runs.get(run_key(order_id, line_item_id))

    def get_or_create(self, order_id, line_item_id):
        key = run_key(order_id, line_item_id)
        run = self._runs.get(key)
        if run is None:
            run = FulfillmentRun(order_id=key[0], line_item_id=key[1])
            self._runs[key] = run
        return run

    def lock_for(self, order_id, line_item_id):
        key = run_key(order_id, line_item_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def session(self, order_id, line_item_id):
        """Exclusive access to the run for one delivery."""
        key = run_key(order_id, line_item_id)
        self._active[key] = self._active.get(key, 0) + 1
        try:
            async with self.lock_for(order_id, line_item_id):
                run = await self._load_or_create(key)
                try:
                    yield run
                finally:
                    await self.checkpoint(run)
                    self._mark_finished(run)
        finally:
            self._active[key] -= 1
            if not self._active[key]:
                del self._active[key]
            self.evict_expired()

    async def _load_or_create(self, key):
        return self.get_or_create(*key)

    async def checkpoint(self, run):
        """Persist the run as it stands. Nothing to do in memory."""

    def _evictable(self, run):
        return run.state == RUN_STATE_FAILED and not run.was_submitted

    def _mark_finished(self, run):
        if self._evictable(run):
            self._finished[run.key] = self.clock()
        else:
            self._finished.pop(run.key, None)

    def evict_expired(self):
        """Drop finished records older than the retention window. Returns how many went."""
        cutoff = self.clock() - self.retention_seconds
        expired = [
            key for key, finished_at in self._finished.items()
            if finished_at <= cutoff and key not in self._active
        ]
        for key in expired:
            del self._finished[key]
            self._runs.pop(key, None)
            self._locks.pop(key, None)
        if expired:
            logger.info(f"[Runs] Evicted {len(expired)} finished run(s)")
        return len(expired)

    @property
    def lock_count(self):
        return len(self._locks)

    def all(self):
        return list(self._runs.values())

    def __len__(self):
        return len(self._runs)


class StorageRunStore(InMemoryRunStore):
    """
    Run store backed by a StorageBackend (S3 in production).

    Records are JSON under runs/order-<orderId>-item-<lineItemId>.json and
    are written whenever the orchestrator checkpoints and when a session
    ends. Memory is only a cache.
    """

    def __init__(self, backend, retention_seconds=DEFAULT_RETENTION_SECONDS, clock=time.monotonic):
        super().__init__(retention_seconds=retention_seconds, clock=clock)
        self.backend = backend

    @staticmethod
    def record_key(order_id, line_item_id):
        return RUN_RECORD_KEY_TEMPLATE.format(order_id=order_id, line_item_id=line_item_id)

    def _read(self, key):
        record_key = self.record_key(*key)
        try:
            if not self.backend.exists(record_key):
                return None
            data = json.loads(self.backend.get_file(record_key).read())
            return FulfillmentRun.from_dict(data)
        except (OSError, BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not read run record {record_key}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            # Unknown outcome: refusing beats submitting twice
            raise StorageError(f"Corrupt run record {record_key}: {e}", retryable=False) from e

    def _write(self, run):
        record_key = self.record_key(*run.key)
        body = json.dumps(run.to_dict(), sort_keys=True, default=str).encode("utf-8")
        self.backend.put(
            record_key,
            body,
            content_type=RUN_RECORD_CONTENT_TYPE,
            cache_control=RUN_RECORD_CACHE_CONTROL,
        )

    async def _load_or_create(self, key):
        run = self._runs.get(key)
        if run is None:
            run = await asyncio.to_thread(self._read, key)
            if run is not None:
                logger.info(f"[Runs] Loaded run {key[0]}/{key[1]} in state {run.state}")
                self._runs[key] = run
        return run or self.get_or_create(*key)

    async def checkpoint(self, run):
        try:
            await asyncio.to_thread(self._write, run)
        except (OSError, BotoCoreError, ClientError) as e:
            # The cached record still guards this process
            logger.error(
                f"[Runs] Could not persist run {run.order_id}/{run.line_item_id}: {e}",
                extra={"order_id": run.order_id, "line_item_id": run.line_item_id, "run_state": run.state},
            )

    def _evictable(self, run):
        return run.is_terminal


def build_run_store():
    """Run store selected by RUN_STORE_BACKEND."""
    from config import RUN_STORE_BACKEND, RUN_RETENTION_SECONDS

    if RUN_STORE_BACKEND == "storage":
        from utils.storage import get_storage
        return StorageRunStore(get_storage(), retention_seconds=RUN_RETENTION_SECONDS)
    return InMemoryRunStore(retention_seconds=RUN_RETENTION_SECONDS)
