"""
SyncEngine — drains the MutationQueue against the remote.

Flow for one pass (attempt_sync):
  1. Reject immediately if a pass is running, we are offline, or there is no
     remote transport (local-only mode)
  2. Take a stable copy of the queue; an empty queue leaves status untouched
  3. Status → syncing, open a SyncLog row
  4. Send items (strictly in order, or one ordered lane per entity type)
  5. Remove exactly the ids that succeeded
  6. Status → completed (and record last sync time) or failed(reason)

A single item failing (False, exception, timeout) never aborts the pass; it
stays queued for the next one. Going offline stops new items from starting
and the pass ends failed("offline").

The single-pass guarantee is an asyncio.Lock checked with locked() before
acquiring: a second trigger is rejected, never queued behind the first.
Status and progress are only touched from the event loop.
"""
import asyncio
import logging
from collections import Counter, OrderedDict
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from tinysteps.clock import Clock, utcnow
from tinysteps.executor import run_blocking
from tinysteps.models.entities import EntityType
from tinysteps.models.sync import SyncItem, SyncLog
from tinysteps.storage.errors import PersistenceError
from tinysteps.storage.meta import LAST_SYNC_KEY, MetaStore
from tinysteps.storage.mutation_queue import MutationQueue
from tinysteps.sync.transport import SyncTransport

logger = logging.getLogger(__name__)

OFFLINE_REASON = "offline"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: SyncState
    reason: Optional[str] = None

    @classmethod
    def idle(cls) -> "SyncStatus":
        return cls(state=SyncState.IDLE)

    @classmethod
    def syncing(cls) -> "SyncStatus":
        return cls(state=SyncState.SYNCING)

    @classmethod
    def completed(cls) -> "SyncStatus":
        return cls(state=SyncState.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> "SyncStatus":
        return cls(state=SyncState.FAILED, reason=reason)


class SyncProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: int = 0
    total: int = 0

    @property
    def fraction(self) -> float:
        return self.succeeded / self.total if self.total else 0.0


class SyncConcurrency(str, Enum):
    SEQUENTIAL = "sequential"
    PER_TYPE = "per_type"


StatusListener = Callable[[SyncStatus], None]


class _PassOutcome:
    def __init__(self, total: int):
        self.total = total
        self.succeeded: List[str] = []
        self.failed: Counter = Counter()
        self.offline = False

    @property
    def failed_count(self) -> int:
        return sum(self.failed.values())

    def failure_reason(self) -> str:
        breakdown = ", ".join(
            f"{etype.value}: {n}"
            for etype, n in sorted(self.failed.items(), key=lambda kv: kv[0].value)
        )
        return f"{self.failed_count} of {self.total} items failed ({breakdown})"


class SyncEngine:
    """Transmits queued mutations and tracks the sync state machine."""

    def __init__(
        self,
        queue: MutationQueue,
        meta: MetaStore,
        reachability,
        transport: Optional[SyncTransport] = None,
        *,
        concurrency: SyncConcurrency = SyncConcurrency.SEQUENTIAL,
        max_parallel: int = 4,
        item_timeout: float = 15.0,
        clock: Clock = utcnow,
    ):
        """
        Args:
            queue: MutationQueue to drain.
            meta: MetaStore receiving the last successful sync time.
            reachability: Anything with an ``is_online`` attribute
                          (ReachabilityMonitor in production).
            transport: Remote sender. None means local-only mode.
            concurrency: Item ordering policy for a pass.
            max_parallel: Lane bound for SyncConcurrency.PER_TYPE.
            item_timeout: Seconds before a single send counts as failed.
            clock: Callable returning the current naive-UTC datetime.
        """
        self.queue = queue
        self.meta = meta
        self.reachability = reachability
        self.transport = transport
        self.concurrency = SyncConcurrency(concurrency)
        self.max_parallel = max(1, max_parallel)
        self.item_timeout = item_timeout
        self._clock = clock
        self._pass_lock = asyncio.Lock()
        self._status = SyncStatus.idle()
        self._progress = SyncProgress()
        self._listeners: List[StatusListener] = []

    # ─── State ────────────────────────────────────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def progress(self) -> SyncProgress:
        return self._progress

    @property
    def is_syncing(self) -> bool:
        return self._pass_lock.locked()

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Call listener on every status change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def last_sync_at(self) -> Optional[datetime]:
        return self.meta.last_sync_at()

    # ─── Triggers ─────────────────────────────────────────────────────────────

    async def attempt_sync(self) -> SyncStatus:
        """Run one pass if possible. Returns the status after the attempt.

        Raises:
            PersistenceError: the queue could not be read or updated.
        """
        if self._pass_lock.locked():
            logger.debug("Sync already in progress; ignoring trigger")
            return self._status
        if self.transport is None:
            logger.debug("No remote configured; nothing to sync")
            return self._status
        if not self.reachability.is_online:
            logger.debug("Offline; deferring sync")
            return self._status

        async with self._pass_lock:
            try:
                return await self._run_pass()
            except PersistenceError as exc:
                if self._status.state is SyncState.SYNCING:
                    self._set_status(SyncStatus.failed(str(exc)))
                raise

    async def on_reachability_change(self, online: bool) -> None:
        """Subscriber for ReachabilityMonitor: sync on every online transition."""
        if not online or self._pass_lock.locked():
            return
        try:
            await self.attempt_sync()
        except PersistenceError as exc:
            logger.error("Sync after reconnect failed: %s", exc)

    # ─── Pass ─────────────────────────────────────────────────────────────────

    async def _run_pass(self) -> SyncStatus:
        started_at = self._clock()
        items = await run_blocking(self.queue.peek_all)
        if not items:
            logger.debug("Sync queue empty")
            return self._status

        outcome = _PassOutcome(total=len(items))
        self._progress = SyncProgress(succeeded=0, total=len(items))
        self._set_status(SyncStatus.syncing())
        log_id = await run_blocking(self._open_log, started_at, len(items))
        logger.info("Sync pass started: %d items (%s)", len(items), self.concurrency.value)

        if self.concurrency is SyncConcurrency.PER_TYPE:
            await self._drain_per_type(items, outcome)
        else:
            await self._drain_lane(items, outcome)

        try:
            await run_blocking(self.queue.remove_succeeded, outcome.succeeded)
            if not outcome.offline and not outcome.failed:
                await run_blocking(self.meta.set_datetime, LAST_SYNC_KEY, self._clock())
        except PersistenceError as exc:
            self._set_status(SyncStatus.failed(f"Could not update sync queue: {exc}"))
            await run_blocking(self._close_log, log_id, outcome, str(exc))
            raise

        if outcome.offline:
            status = SyncStatus.failed(OFFLINE_REASON)
        elif outcome.failed:
            status = SyncStatus.failed(outcome.failure_reason())
        else:
            status = SyncStatus.completed()

        await run_blocking(self._close_log, log_id, outcome, status.reason)
        logger.info(
            "Sync pass finished: %d synced, %d failed%s",
            len(outcome.succeeded),
            outcome.failed_count,
            " (went offline)" if outcome.offline else "",
        )
        self._set_status(status)
        return status

    async def _drain_per_type(self, items: List[SyncItem], outcome: _PassOutcome) -> None:
        lanes: Dict[EntityType, List[SyncItem]] = OrderedDict()
        for item in items:
            lanes.setdefault(item.entity_type, []).append(item)
        limit = asyncio.Semaphore(self.max_parallel)

        async def _lane(lane_items: List[SyncItem]) -> None:
            async with limit:
                await self._drain_lane(lane_items, outcome)

        await asyncio.gather(*(_lane(lane) for lane in lanes.values()))

    async def _drain_lane(self, items: List[SyncItem], outcome: _PassOutcome) -> None:
        for item in items:
            if outcome.offline:
                return
            if not self.reachability.is_online:
                logger.info("Went offline during sync; stopping")
                outcome.offline = True
                return
            if await self._send_one(item):
                outcome.succeeded.append(item.id)
                self._progress = SyncProgress(
                    succeeded=len(outcome.succeeded), total=outcome.total
                )
            else:
                outcome.failed[item.entity_type] += 1

    async def _send_one(self, item: SyncItem) -> bool:
        try:
            return bool(await asyncio.wait_for(self.transport.send(item), self.item_timeout))
        except asyncio.TimeoutError:
            logger.warning("Timed out sending %s item %s", item.entity_type.value, item.id)
        except Exception as exc:
            logger.warning("Failed to send %s item %s: %s", item.entity_type.value, item.id, exc)
        return False

    # ─── Status + audit log ───────────────────────────────────────────────────

    def _set_status(self, status: SyncStatus) -> None:
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Sync status listener failed")

    def _open_log(self, started_at: datetime, total: int) -> Optional[int]:
        log = SyncLog(started_at=started_at, status="running", items_total=total)
        try:
            with Session(self.queue.engine) as s:
                s.add(log)
                s.commit()
                s.refresh(log)
                return log.id
        except SQLAlchemyError as exc:
            logger.error("Could not write sync log: %s", exc)
            return None

    def _close_log(self, log_id: Optional[int], outcome: _PassOutcome, error: Optional[str]) -> None:
        if log_id is None:
            return
        if error is None:
            status = "success"
        elif outcome.succeeded:
            status = "partial"
        else:
            status = "error"
        try:
            with Session(self.queue.engine) as s:
                log = s.get(SyncLog, log_id)
                if log is None:
                    return
                log.finished_at = self._clock()
                log.status = status
                log.items_synced = len(outcome.succeeded)
                log.items_failed = outcome.failed_count
                log.error_message = error
                s.add(log)
                s.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not update sync log %s: %s", log_id, exc)
