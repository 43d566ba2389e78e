"""
Sync Engine.

Persists Selection Store contents through the gateway:

1. No-op short-circuit against the last persisted set
2. Offline capture (one slot per category, latest write wins)
3. Attempt loop with exponential backoff for transient failures
4. Replay of the queued entry when the network comes back

Retry state per entry:
    pending -> in_flight -> succeeded
                         -> backoff_wait -> in_flight ...
                         -> failed
    pending -> queued_offline (replayed on reconnect)

Results are returned as PersistResult values, never raised.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .errors import SyncError, UnauthorizedError
from .gateway import SelectionPersistence
from .selection import Category, clean_ids

logger = logging.getLogger(__name__)


# =============================================================================
# Collaborators
# =============================================================================


class Clock(Protocol):
    """Timer used for backoff and debounce waits."""

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


NetworkListener = Callable[[bool], None]


class NetworkMonitor:
    """
    Current connectivity plus change notifications.

    Whatever owns the connection (browser bridge, health probe, test) calls
    `set_online`; listeners only hear about actual transitions.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[NetworkListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: NetworkListener) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info(f"Network {'online' if online else 'offline'}")
        for listener in self._listeners:
            listener(online)


# =============================================================================
# Entries and results
# =============================================================================


class SyncStatus(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    BACKOFF_WAIT = "backoff_wait"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    QUEUED_OFFLINE = "queued_offline"


@dataclass
class SyncQueueEntry:
    """The full desired set for one category, plus retry bookkeeping."""
    category: Category
    payload: frozenset[str]
    attempt: int = 0
    status: SyncStatus = SyncStatus.PENDING


class PersistOutcome(Enum):
    OK = "ok"              # server has it
    DEFERRED = "deferred"  # intent captured, not yet durable
    ERR = "err"


class ErrorKind(Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    NETWORK = "network"


@dataclass(frozen=True)
class PersistResult:
    outcome: PersistOutcome
    category: Category
    selections: frozenset[str]
    error_kind: ErrorKind | None = None
    message: str = ""

    @classmethod
    def ok(cls, category: Category, selections: frozenset[str], message: str = "") -> "PersistResult":
        return cls(PersistOutcome.OK, category, selections, message=message)

    @classmethod
    def deferred(cls, category: Category, selections: frozenset[str], message: str = "") -> "PersistResult":
        return cls(PersistOutcome.DEFERRED, category, selections, message=message)

    @classmethod
    def err(
        cls, category: Category, selections: frozenset[str], kind: ErrorKind, message: str
    ) -> "PersistResult":
        return cls(PersistOutcome.ERR, category, selections, error_kind=kind, message=message)

    @property
    def is_ok(self) -> bool:
        return self.outcome == PersistOutcome.OK

    @property
    def is_deferred(self) -> bool:
        return self.outcome == PersistOutcome.DEFERRED

    @property
    def is_err(self) -> bool:
        return self.outcome == PersistOutcome.ERR


@dataclass(frozen=True)
class SyncPolicy:
    """Retry and debounce knobs (seconds)."""
    max_attempts: int = 3
    backoff_base: float = 0.2
    debounce: float = 0.3

    def backoff_delay(self, attempt: int) -> float:
        """Wait after failed attempt number `attempt` (1-based)."""
        return self.backoff_base * attempt ** 2

    @classmethod
    def from_settings(cls, settings: Any = None) -> "SyncPolicy":
        if settings is None:
            from klio.config import settings
        return cls(
            max_attempts=settings.sync_max_attempts,
            backoff_base=settings.sync_backoff_base_ms / 1000,
            debounce=settings.sync_debounce_ms / 1000,
        )


@dataclass
class _CategorySlot:
    last_persisted: frozenset[str] | None = None  # None until hydrated or saved
    in_flight: bool = False
    pending: SyncQueueEntry | None = None
    offline: SyncQueueEntry | None = None
    generation: int = 0
    latest: SyncQueueEntry | None = None


# =============================================================================
# Engine
# =============================================================================


class SyncEngine:
    """
    Reconciles local selections with the server, one category at a time.

    At most one call per category is in flight; requests arriving meanwhile
    replace a single pending entry which is sent when the call returns.
    Categories are independent of each other.
    """

    def __init__(
        self,
        gateway: SelectionPersistence,
        monitor: NetworkMonitor | None = None,
        clock: Clock | None = None,
        policy: SyncPolicy | None = None,
    ):
        self._gateway = gateway
        self._monitor = monitor or NetworkMonitor()
        self._clock = clock or SystemClock()
        self.policy = policy or SyncPolicy()
        self._slots: dict[Category, _CategorySlot] = {c: _CategorySlot() for c in Category}
        self._tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._replay_due = False
        self._monitor.subscribe(self._on_network_change)

    @property
    def monitor(self) -> NetworkMonitor:
        return self._monitor

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def last_persisted(self, category: Category) -> frozenset[str] | None:
        return self._slots[category].last_persisted

    def queued_offline(self, category: Category) -> SyncQueueEntry | None:
        return self._slots[category].offline

    def latest_entry(self, category: Category) -> SyncQueueEntry | None:
        """Most recent entry that reached the attempt loop or offline queue."""
        return self._slots[category].latest

    def is_in_flight(self, category: Category) -> bool:
        return self._slots[category].in_flight

    # -------------------------------------------------------------------------
    # Hydration
    # -------------------------------------------------------------------------

    async def hydrate(self, category: Category) -> frozenset[str]:
        """Load the server's set and remember it as persisted."""
        ids = frozenset(await self._gateway.fetch_selections(category))
        self.mark_persisted(category, ids)
        return ids

    def mark_persisted(self, category: Category, ids: Iterable[str]) -> None:
        self._slots[category].last_persisted = frozenset(clean_ids(ids))

    # -------------------------------------------------------------------------
    # Persist
    # -------------------------------------------------------------------------

    async def persist(self, category: Category, ids: Iterable[str]) -> PersistResult:
        """
        Save the full set now.

        Cancels any debounced save still waiting for this category.
        """
        self._drain_due_replays()
        slot = self._slots[category]
        slot.generation += 1
        return await self._submit(category, frozenset(clean_ids(ids)))

    async def persist_debounced(self, category: Category, ids: Iterable[str]) -> PersistResult:
        """
        Save after the debounce window unless a newer request arrives.

        A superseded request returns deferred without touching the network.
        """
        self._drain_due_replays()
        slot = self._slots[category]
        slot.generation += 1
        return await self._debounced(category, frozenset(clean_ids(ids)), slot.generation)

    def schedule(self, category: Category, ids: Iterable[str]) -> asyncio.Task:
        """
        Start a debounced save in the background and return its task.

        The request supersedes earlier ones as soon as it is scheduled, not
        when the task first runs.
        """
        self._drain_due_replays()
        slot = self._slots[category]
        slot.generation += 1
        return self._spawn(self._debounced(category, frozenset(clean_ids(ids)), slot.generation))

    async def replay_offline(self, category: Category) -> PersistResult | None:
        """Send the queued offline entry, if any. Slot clears on success."""
        slot = self._slots[category]
        entry = slot.offline
        if entry is None:
            return None
        if not self._monitor.is_online:
            return PersistResult.deferred(category, entry.payload, "still offline")

        if slot.in_flight:
            slot.pending = entry
            return PersistResult.deferred(category, entry.payload, "queued behind in-flight save")

        logger.info(f"Replaying queued {category.value} save ({len(entry.payload)} ids)")
        entry.status = SyncStatus.PENDING
        return await self._drive(slot, entry)

    async def wait_idle(self) -> None:
        """Wait for every scheduled save and replay to finish."""
        self._drain_due_replays()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _debounced(self, category: Category, payload: frozenset[str], token: int) -> PersistResult:
        await self._clock.sleep(self.policy.debounce)

        if self._slots[category].generation != token:
            return PersistResult.deferred(category, payload, "superseded by a newer selection")
        return await self._submit(category, payload)

    async def _submit(self, category: Category, payload: frozenset[str]) -> PersistResult:
        slot = self._slots[category]
        entry = SyncQueueEntry(category=category, payload=payload)

        if slot.in_flight:
            slot.pending = entry
            logger.debug(f"{category.value} save in flight; newer payload waits")
            return PersistResult.deferred(category, payload, "queued behind in-flight save")

        return await self._drive(slot, entry)

    async def _drive(self, slot: _CategorySlot, entry: SyncQueueEntry) -> PersistResult:
        slot.in_flight = True
        try:
            result = await self._settle(slot, entry)
            while slot.pending is not None:
                entry, slot.pending = slot.pending, None
                result = await self._settle(slot, entry)
            return result
        finally:
            slot.in_flight = False

    async def _settle(self, slot: _CategorySlot, entry: SyncQueueEntry) -> PersistResult:
        category = entry.category

        if slot.offline is not None and slot.offline is not entry:
            # A newer intent replaces whatever was captured offline
            slot.offline = None

        if slot.last_persisted is not None and entry.payload == slot.last_persisted:
            entry.status = SyncStatus.SUCCEEDED
            slot.offline = None
            return PersistResult.ok(category, entry.payload, "No changes needed")

        slot.latest = entry
        if not self._monitor.is_online:
            return self._queue_offline(slot, entry)

        return await self._attempt_loop(slot, entry)

    async def _attempt_loop(self, slot: _CategorySlot, entry: SyncQueueEntry) -> PersistResult:
        category = entry.category
        policy = self.policy

        entry.attempt = 0
        while True:
            entry.attempt += 1
            entry.status = SyncStatus.IN_FLIGHT
            try:
                stored = await self._gateway.replace_selections(category, sorted(entry.payload))
            except SyncError as e:
                if not e.retryable:
                    entry.status = SyncStatus.FAILED
                    if slot.offline is entry:
                        slot.offline = None
                    kind = ErrorKind.AUTH if isinstance(e, UnauthorizedError) else ErrorKind.VALIDATION
                    logger.warning(f"Save of {category.value} rejected ({kind.value}): {e}")
                    return PersistResult.err(category, entry.payload, kind, str(e))

                if entry.attempt >= policy.max_attempts:
                    entry.status = SyncStatus.FAILED
                    if not self._monitor.is_online:
                        return self._queue_offline(slot, entry)
                    logger.warning(
                        f"Save of {category.value} failed after {entry.attempt} attempts: {e}"
                    )
                    return PersistResult.err(category, entry.payload, ErrorKind.NETWORK, str(e))

                delay = policy.backoff_delay(entry.attempt)
                logger.info(
                    f"Save of {category.value} attempt {entry.attempt} failed ({e}); retrying in {delay:.1f}s"
                )
                entry.status = SyncStatus.BACKOFF_WAIT
                await self._clock.sleep(delay)

                if not self._monitor.is_online:
                    return self._queue_offline(slot, entry)
                continue

            entry.status = SyncStatus.SUCCEEDED
            slot.last_persisted = frozenset(stored)
            if slot.offline is entry:
                slot.offline = None
            logger.debug(f"Saved {category.value} on attempt {entry.attempt}")
            return PersistResult.ok(category, slot.last_persisted)

    def _queue_offline(self, slot: _CategorySlot, entry: SyncQueueEntry) -> PersistResult:
        entry.status = SyncStatus.QUEUED_OFFLINE
        entry.attempt = 0
        slot.offline = entry
        logger.info(f"Offline: queued {entry.category.value} save for replay")
        return PersistResult.deferred(entry.category, entry.payload, "saved offline, will sync when back online")

    def _on_network_change(self, online: bool) -> None:
        if not online:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Reported from outside the event loop (sync code or another thread)
            loop = self._loop
            if loop is not None and loop.is_running():
                loop.call_soon_threadsafe(self._schedule_replays)
            else:
                self._replay_due = True
                logger.info("Back online outside the event loop; replay runs on next engine call")
            return
        self._schedule_replays()

    def _drain_due_replays(self) -> None:
        """Remember the running loop and start replays deferred by a sync reconnect."""
        self._loop = asyncio.get_running_loop()
        if self._replay_due and self._monitor.is_online:
            self._schedule_replays()

    def _schedule_replays(self) -> None:
        self._replay_due = False
        for category, slot in self._slots.items():
            if slot.offline is not None:
                task = self._spawn(self.replay_offline(category))
                task.add_done_callback(_log_replay_outcome)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _log_replay_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Offline replay crashed: {error!r}", exc_info=error)
        return
    result = task.result()
    if result is not None and result.is_err:
        logger.warning(f"Offline replay of {result.category.value} failed: {result.message}")
