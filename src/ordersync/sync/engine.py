"""
SyncEngine — polls the legacy store and pushes orders to the remote API.

Flow for one poll cycle:
  1. Query the legacy store for orders entered on/after the watermark date
     (in a worker thread, with a hard timeout)
  2. On a legacy error: log, audit, stop. The watermark is not advanced and
     nothing is sent or queued.
  3. Advance the watermark, map each row to a CanonicalOrder
  4. Send each order (create / update / skip against remote state)
  5. Drain the durable queue

Sending never raises for remote failures: the order goes to the durable queue
and is retried on the next drain. Creates are safe to repeat because every
send starts with a lookup by external id, so the coarse day-level watermark
re-reading rows already delivered is harmless.

All cycles and drains for one engine run under a single asyncio.Lock, so a
timer tick never overlaps a running cycle.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ordersync.legacy.queries import build_changed_orders_query
from ordersync.legacy.reader import LegacyReader, LegacyStoreError, Row
from ordersync.mapping.row_mapper import row_to_order
from ordersync.models.order import CanonicalOrder
from ordersync.models.sync import SyncLog
from ordersync.queue.durable_queue import DurableQueue
from ordersync.remote.gateway import RemoteError, RemoteGateway
from ordersync.sync.decision import SyncAction, decide_action

logger = logging.getLogger(__name__)

EPOCH = datetime.fromtimestamp(0, timezone.utc)
POLL_JOB_ID = "legacy_poll"

GatewayFactory = Callable[[str, str, float], RemoteGateway]


class EngineState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class SendOutcome(str, Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    QUEUED = "queued"


@dataclass
class SyncSession:
    """Connection details handed over by the host plus the poll watermark."""

    server_url: str = ""
    token: str = ""
    last_poll: datetime = EPOCH
    running: bool = False

    @property
    def is_connected(self) -> bool:
        return bool(self.server_url and self.token)


@dataclass
class CycleResult:
    """Counters for one poll cycle or drain."""

    ok: bool = True
    rows_read: int = 0
    delivered: int = 0
    skipped: int = 0
    queued: int = 0
    error: Optional[str] = None

    def record(self, outcome: SendOutcome) -> None:
        if outcome is SendOutcome.DELIVERED:
            self.delivered += 1
        elif outcome is SendOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.queued += 1


def _local_now() -> datetime:
    return datetime.now().astimezone()


class SyncEngine:
    """Owns the sync session, the poll timer and the send/queue logic."""

    def __init__(
        self,
        reader: LegacyReader,
        queue: DurableQueue,
        *,
        gateway_factory: GatewayFactory = RemoteGateway,
        poll_interval: float = 5.0,
        http_timeout: float = 8.0,
        legacy_timeout: float = 15.0,
        audit_engine=None,
        clock: Callable[[], datetime] = _local_now,
    ):
        """
        Args:
            reader: LegacyReader (PowerShellOleDbReader or an in-memory fake).
            queue: DurableQueue holding undelivered orders.
            gateway_factory: Builds a RemoteGateway from (url, token, timeout).
            poll_interval: Seconds between timer-driven poll cycles.
            http_timeout: Per-request timeout for the remote API.
            legacy_timeout: Hard timeout for one legacy query.
            audit_engine: SQLAlchemy engine for SyncLog rows; None disables auditing.
            clock: Returns "now"; replaced in tests.
        """
        self.reader = reader
        self.queue = queue
        self.session = SyncSession()
        self._gateway_factory = gateway_factory
        self._poll_interval = poll_interval
        self._http_timeout = http_timeout
        self._legacy_timeout = legacy_timeout
        self._audit_engine = audit_engine
        self._clock = clock
        self._lock = asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._disabled_logged = False

    # ─── Control surface ──────────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return EngineState.RUNNING if self.session.running else EngineState.STOPPED

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    @property
    def audit_engine(self):
        return self._audit_engine

    async def start(self, server_url: str, token: str) -> EngineState:
        """
        Start syncing with the given backend and token.

        Does nothing (stays STOPPED) when the legacy store is not present on
        this host. When already running only the session is updated.
        Otherwise drains the queue, runs one poll cycle and arms the timer.
        """
        if not self.reader.is_available():
            if not self._disabled_logged:
                logger.info("Legacy store not found on this host; sync disabled.")
                self._disabled_logged = True
            return self.state

        self.session.server_url = server_url or ""
        self.session.token = token or ""
        if self.session.running:
            return self.state

        self.session.running = True
        logger.info(
            "Starting legacy sync → %s (every %.0fs)",
            self.session.server_url or "<no server>",
            self._poll_interval,
        )

        await self._guarded(self.drain_queue)
        await self._guarded(self.poll_once)

        # stop() may have been called while the initial cycle ran
        if not self.session.running:
            return self.state

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._scheduled_poll,
            trigger="interval",
            seconds=self._poll_interval,
            id=POLL_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        return self.state

    def stop(self) -> EngineState:
        """Cancel the poll timer. An in-flight cycle is allowed to finish."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        if self.session.running:
            logger.info("Legacy sync stopped.")
        self.session.running = False
        return self.state

    async def update_token(self, token: Optional[str]) -> None:
        """Replace the bearer token; a non-empty token flushes the queue."""
        self.session.token = token or ""
        if token:
            await self._guarded(self.drain_queue)

    def update_server_url(self, server_url: Optional[str]) -> None:
        self.session.server_url = server_url or ""

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.session.is_connected,
            "server_url": self.session.server_url or None,
            "last_poll": (
                None if self.session.last_poll == EPOCH
                else self.session.last_poll.isoformat()
            ),
            "queue_size": len(self.queue),
        }

    # ─── Poll cycle ───────────────────────────────────────────────────────────

    async def poll_once(self) -> CycleResult:
        """Run one poll cycle (see module docstring)."""
        async with self._lock:
            return await self._poll_locked()

    async def drain_queue(self) -> CycleResult:
        """Retry every queued order once. No-op when disconnected or empty."""
        async with self._lock:
            return await self._drain_locked()

    async def send(self, order: CanonicalOrder) -> SendOutcome:
        """Deliver one order, queueing it if the remote side is unavailable."""
        result = CycleResult()
        async with self._lock:
            await self._deliver([order], result)
        if result.delivered:
            return SendOutcome.DELIVERED
        if result.skipped:
            return SendOutcome.SKIPPED
        return SendOutcome.QUEUED

    async def _poll_locked(self) -> CycleResult:
        result = CycleResult()
        log_id = self._audit_start()
        started = self._clock()
        sql = build_changed_orders_query(self.session.last_poll.date())

        try:
            rows = await self._query_legacy(sql)
        except LegacyStoreError as exc:
            logger.error("Legacy store query failed: %s", exc)
            result.ok = False
            result.error = str(exc)
            self._audit_finish(log_id, "legacy_error", result)
            return result
        except Exception as exc:
            result.ok = False
            result.error = str(exc)
            self._audit_finish(log_id, "error", result)
            raise

        self.session.last_poll = started
        result.rows_read = len(rows)

        try:
            orders = [o for o in (row_to_order(r) for r in rows) if o is not None]
            await self._deliver(orders, result)
            await self._drain_locked()
        except Exception as exc:
            result.ok = False
            result.error = str(exc)
            self._audit_finish(log_id, "error", result)
            raise

        if result.delivered or result.queued:
            logger.info(
                "Poll cycle: %d rows, %d delivered, %d skipped, %d queued",
                result.rows_read, result.delivered, result.skipped, result.queued,
            )
        self._audit_finish(log_id, "success", result)
        return result

    async def _drain_locked(self) -> CycleResult:
        result = CycleResult()
        if not self.session.is_connected or len(self.queue) == 0:
            return result

        snapshot = self.queue.entries()
        logger.info("Sending %d queued order(s)...", len(snapshot))
        await self._deliver(snapshot, result)
        return result

    async def _query_legacy(self, sql: str) -> List[Row]:
        """Run the blocking legacy query in the thread pool with a hard timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.reader.query, sql),
                timeout=self._legacy_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise LegacyStoreError(
                f"Legacy query timed out after {self._legacy_timeout:.0f}s"
            ) from exc

    # ─── Sending ──────────────────────────────────────────────────────────────

    async def _deliver(
        self, orders: Iterable[CanonicalOrder], result: CycleResult
    ) -> None:
        orders = list(orders)
        if not orders:
            return

        if not self.session.is_connected:
            self._enqueue_all(orders, result)
            return

        try:
            gateway = self._gateway_factory(
                self.session.server_url, self.session.token, self._http_timeout
            )
        except RemoteError as exc:
            logger.warning("Remote API unusable, queueing %d order(s): %s", len(orders), exc)
            self._enqueue_all(orders, result)
            return

        sent = 0
        try:
            for order in orders:
                result.record(await self._send_one(order, gateway))
                sent += 1
        except Exception:
            # Orders not yet handled must survive the failure.
            self._enqueue_all(orders[sent:], result)
            raise
        finally:
            await gateway.aclose()

    def _enqueue_all(
        self, orders: List[CanonicalOrder], result: CycleResult
    ) -> None:
        for order in orders:
            self.queue.upsert(order)
            result.record(SendOutcome.QUEUED)

    async def _send_one(
        self, order: CanonicalOrder, gateway: RemoteGateway
    ) -> SendOutcome:
        ext_id = order.external_id
        status = order.lifecycle_status

        try:
            existing = await gateway.find_by_external_id(ext_id)
        except RemoteError as exc:
            logger.warning("Remote unavailable, order #%s queued: %s", ext_id, exc)
            self.queue.upsert(order)
            return SendOutcome.QUEUED

        action = decide_action(existing, status)
        if action is SyncAction.SKIP:
            # Remote is already at or past this status; nothing left to retry.
            if ext_id in self.queue:
                self.queue.remove(ext_id)
            return SendOutcome.SKIPPED

        try:
            if action is SyncAction.CREATE:
                await gateway.create(order)
                logger.info("Order #%s created (%s) for %s", ext_id, status.value, order.client_name)
            else:
                await gateway.update_status(existing.get("id"), status, now=self._clock())
                logger.info(
                    "Order #%s updated %s → %s",
                    ext_id, existing.get("currentStatus"), status.value,
                )
        except RemoteError as exc:
            logger.warning("Remote unavailable, order #%s queued: %s", ext_id, exc)
            self.queue.upsert(order)
            return SendOutcome.QUEUED

        if ext_id in self.queue:
            self.queue.remove(ext_id)
        return SendOutcome.DELIVERED

    # ─── Scheduling helpers ───────────────────────────────────────────────────

    async def _scheduled_poll(self) -> None:
        """Timer job: a failing cycle must never kill the scheduler."""
        if not self.session.running:
            return
        await self._guarded(self.poll_once)

    async def _guarded(self, fn: Callable[[], Awaitable[Any]]) -> None:
        try:
            await fn()
        except Exception:
            logger.exception("Unexpected error in legacy sync")

    # ─── Audit log ────────────────────────────────────────────────────────────

    def _audit_start(self) -> Optional[int]:
        if self._audit_engine is None:
            return None
        try:
            log = SyncLog(started_at=datetime.utcnow(), status="running")
            with Session(self._audit_engine) as s:
                s.add(log)
                s.commit()
                s.refresh(log)
            return log.id
        except SQLAlchemyError as exc:
            logger.warning("Could not write sync audit row: %s", exc)
            return None

    def _audit_finish(
        self, log_id: Optional[int], status: str, result: CycleResult
    ) -> None:
        if self._audit_engine is None or log_id is None:
            return
        try:
            with Session(self._audit_engine) as s:
                log = s.get(SyncLog, log_id)
                log.status = status
                log.finished_at = datetime.utcnow()
                log.rows_read = result.rows_read
                log.orders_delivered = result.delivered
                log.orders_queued = result.queued
                log.error_message = result.error
                s.add(log)
                s.commit()
        except SQLAlchemyError as exc:
            logger.warning("Could not update sync audit row: %s", exc)


def build_sync_engine(settings=None) -> SyncEngine:
    """Wire a SyncEngine from Settings (real legacy reader, disk queue, audit DB)."""
    from ordersync.config import get_settings
    from ordersync.db.engine import get_engine
    from ordersync.legacy.reader import PowerShellOleDbReader

    settings = settings or get_settings()
    reader = PowerShellOleDbReader(
        settings.legacy_db_path,
        settings.legacy_db_password,
        timeout=settings.legacy_query_timeout,
    )
    return SyncEngine(
        reader,
        DurableQueue(settings.queue_file),
        poll_interval=settings.poll_interval_seconds,
        http_timeout=settings.http_timeout,
        legacy_timeout=settings.legacy_query_timeout,
        audit_engine=get_engine(),
    )
