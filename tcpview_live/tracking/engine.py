from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from ..errors import ResolverError, SourceBroken, SourceUnavailable, TrackerError
from ..models import ConnKey, ConnectionRecord, EngineMode, Marker, ResolverReply, ResolverRequest, Snapshot
from ..collectors.loop import collector_loop
from .notifier import UpdateNotifier

logger = logging.getLogger(__name__)

class SnapshotReader(Protocol):
    def read(self) -> Snapshot: ...

@dataclass
class TickResult:
    changed: bool = False
    skipped: bool = False
    error: Optional[TrackerError] = None
    fatal: bool = False
    inserted: int = 0
    pending: int = 0
    pruned: int = 0

class ConnectionTracker:
    """Owns the connection-identity -> ConnectionRecord mapping.

    Each ``tick`` reads a snapshot, reconciles it against the mapping and
    notifies the registered listener when something changed. Ticks are
    serialized; the mapping and the mode flags share one lock. Consumers get
    copies through ``get_current_data`` and route deletions through
    ``remove``.
    """

    def __init__(self, reader: SnapshotReader, channel=None, mode: Optional[EngineMode] = None,
                 failure_threshold: int = 3, resolver_cooldown: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.reader = reader
        self.channel = channel
        self.failure_threshold = max(1, failure_threshold)
        self.resolver_cooldown = resolver_cooldown
        self._clock = clock

        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._mode = replace(mode) if mode else EngineMode()
        self._records: Dict[ConnKey, ConnectionRecord] = {}
        self._initialized = False
        self._failures = 0
        self._fatal: Optional[SourceBroken] = None
        self._ticking: Optional[int] = None  # ident of the thread inside tick()

        self._resolver_retry_at = 0.0
        self._resolver_error: Optional[str] = None

        self.updates = UpdateNotifier("update")
        self.failures = UpdateNotifier("failure")

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._shut_down = False
        self._stop_channel_after_tick = False

    # -- consumer surface ------------------------------------------------

    def get_current_data(self) -> Optional[Dict[ConnKey, ConnectionRecord]]:
        with self._lock:
            if not self._initialized:
                return None
            return {k: replace(r) for k, r in self._records.items()}

    def export_data(self) -> Dict[ConnKey, ConnectionRecord]:
        """Like ``get_current_data`` but taken between ticks, never mid-tick.

        Waits for an in-flight tick to finish; the pause flag is left alone.
        """
        if self._ticking == threading.get_ident():
            raise RuntimeError("export_data() called from inside a tracker callback")
        with self._tick_lock:
            return self.get_current_data() or {}

    def set_paused(self, paused: bool) -> None:
        with self._lock:
            self._mode.paused = bool(paused)
        logger.info("updates %s", "paused" if paused else "resumed")

    def is_paused(self) -> bool:
        with self._lock:
            return self._mode.paused

    def set_capturing(self, capturing: bool) -> None:
        with self._lock:
            self._mode.capturing = bool(capturing)
        logger.info("capture %s", "on" if capturing else "off")

    def is_capturing(self) -> bool:
        with self._lock:
            return self._mode.capturing

    def set_resolve_owners(self, enabled: bool) -> None:
        with self._lock:
            self._mode.resolve_owners = bool(enabled)
            if enabled:
                self._resolver_retry_at = 0.0

    def resolve_owners_enabled(self) -> bool:
        with self._lock:
            return self._mode.resolve_owners

    def register_update_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self.updates.register(callback)

    def register_failure_callback(self, callback: Optional[Callable[[SourceBroken], None]]) -> None:
        self.failures.register(callback)

    def remove(self, keys: Iterable[ConnKey]) -> List[ConnKey]:
        """Drop stale (pending-removal) rows now instead of on the next tick.

        Only honoured while capturing is off; active rows are never removed.
        """
        removed: List[ConnKey] = []
        with self._lock:
            if self._mode.capturing:
                return removed
            for key in keys:
                rec = self._records.get(key)
                if rec is None or rec.marker is not Marker.PENDING_REMOVAL:
                    continue
                rec.marker = Marker.REMOVED
                del self._records[key]
                removed.append(key)
        if removed:
            logger.debug("removed %d stale record(s) on request", len(removed))
        return removed

    @property
    def fatal_error(self) -> Optional[SourceBroken]:
        return self._fatal

    def status(self) -> dict:
        with self._lock:
            pending = sum(1 for r in self._records.values() if r.marker is Marker.PENDING_REMOVAL)
            return {
                'paused': self._mode.paused,
                'capturing': self._mode.capturing,
                'resolve_owners': self._mode.resolve_owners,
                'initialized': self._initialized,
                'records': len(self._records),
                'pending_removal': pending,
                'consecutive_failures': self._failures,
                'resolver_running': bool(self.channel is not None and self.channel.running),
                'resolver_error': self._resolver_error,
                'fatal': str(self._fatal) if self._fatal else None,
            }

    # -- lifecycle -------------------------------------------------------

    def start(self, interval: float = 1.0) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=collector_loop, args=(self, interval, self._stop),
                                        name="tcpview-poller", daemon=True)
        self._thread.start()
        return self._thread

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop polling, wait for the in-flight tick, then stop the helper.

        Called from a tracker callback, the tick is still running on this
        thread: the helper is stopped once that tick lets go of the lock.
        """
        if self._shut_down:
            return
        self._shut_down = True
        self._stop.set()
        if self._ticking == threading.get_ident():
            self._stop_channel_after_tick = True
            return
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._stop_channel()

    def _stop_channel(self) -> None:
        with self._tick_lock:
            if self.channel is not None:
                self.channel.stop()
        logger.info("tracker shut down")

    # -- reconciliation --------------------------------------------------

    def tick(self) -> TickResult:
        me = threading.get_ident()
        if self._ticking == me:
            raise RuntimeError("tick() called from inside a tracker callback")
        with self._tick_lock:
            self._ticking = me
            try:
                result = self._tick()
                if result.changed:
                    self.updates.notify()
            finally:
                self._ticking = None
        if self._stop_channel_after_tick:
            self._stop_channel_after_tick = False
            self._stop_channel()
        return result

    def _tick(self) -> TickResult:
        if self._fatal is not None:
            return TickResult(error=self._fatal, fatal=True)
        with self._lock:
            if self._mode.paused:
                return TickResult(skipped=True)
            resolve_wanted = self._mode.resolve_owners

        try:
            snap = self.reader.read()
        except SourceUnavailable as e:
            return self._source_failed(e)
        self._failures = 0

        owners: Dict[ConnKey, ResolverReply] = {}
        if resolve_wanted:
            owners = self._resolve(self._missing_owners(snap))

        with self._lock:
            if self._mode.paused:
                # paused while we were reading; leave the mapping alone
                return TickResult(skipped=True)
            result = self._reconcile(snap, owners, self._mode.capturing)
            if not self._initialized:
                self._initialized = True
                result.changed = True
        return result

    def _reconcile(self, snap: Snapshot, owners: Dict[ConnKey, ResolverReply], capturing: bool) -> TickResult:
        res = TickResult()
        now = snap.taken_at
        for key, entry in snap.entries.items():
            rec = self._records.get(key)
            if rec is None or rec.marker is not Marker.ACTIVE:
                # first sighting, or a stale row coming back: start over
                rec = ConnectionRecord.from_entry(key, entry, now)
                self._records[key] = rec
                res.inserted += 1
                res.changed = True
            elif rec.refresh(entry, now):
                res.changed = True
            owner = owners.get(key)
            if owner is not None and not rec.has_owner:
                rec.set_owner(owner.pid, owner.name, owner.user)
                res.changed = True

        for key in [k for k in self._records if k not in snap.entries]:
            rec = self._records[key]
            if capturing:
                if rec.marker is Marker.ACTIVE:
                    rec.marker = Marker.PENDING_REMOVAL
                    res.pending += 1
                    res.changed = True
            else:
                rec.marker = Marker.REMOVED
                del self._records[key]
                res.pruned += 1
                res.changed = True
        if res.changed:
            logger.debug("tick: +%d ~pending %d -%d (%d tracked)",
                         res.inserted, res.pending, res.pruned, len(self._records))
        return res

    def _source_failed(self, err: SourceUnavailable) -> TickResult:
        self._failures += 1
        logger.warning("connection table unavailable (%d/%d): %s",
                       self._failures, self.failure_threshold, err)
        if self._failures < self.failure_threshold:
            return TickResult(error=err)
        self._fatal = SourceBroken(self._failures, err)
        logger.error("%s", self._fatal)
        self.failures.notify(self._fatal)
        return TickResult(error=self._fatal, fatal=True)

    # -- ownership -------------------------------------------------------

    def _missing_owners(self, snap: Snapshot) -> List[ResolverRequest]:
        batch: List[ResolverRequest] = []
        with self._lock:
            for key, entry in snap.entries.items():
                if entry.pid is not None or not entry.inode:
                    continue
                rec = self._records.get(key)
                if (rec is not None and rec.marker is Marker.ACTIVE
                        and rec.inode == entry.inode and rec.has_owner):
                    continue
                batch.append(ResolverRequest(key=key, inode=entry.inode))
        return batch

    def _resolve(self, batch: List[ResolverRequest]) -> Dict[ConnKey, ResolverReply]:
        if self.channel is None or not batch:
            return {}
        now = self._clock()
        if not self.channel.running:
            if now < self._resolver_retry_at:
                return {}
            try:
                self.channel.start()
            except ResolverError as e:
                return self._resolver_failed(e, now)
        try:
            replies = self.channel.resolve(batch)
        except ResolverError as e:
            return self._resolver_failed(e, now)
        self._resolver_error = None
        return replies

    def _resolver_failed(self, err: ResolverError, now: float) -> Dict[ConnKey, ResolverReply]:
        self._resolver_retry_at = now + self.resolver_cooldown
        self._resolver_error = f"{type(err).__name__}: {err}"
        logger.warning("owner resolution unavailable, retrying in %.0fs: %s", self.resolver_cooldown, err)
        return {}
