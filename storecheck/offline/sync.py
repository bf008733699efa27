"""
Sync coordinator.

Drains the device queue to the server:

    for each pending/failed entry:
        syncing → gateway.finalize → delete on success | failed + error

Only one drain runs at a time; a caller that finds a drain in flight is
dropped with a zero result. Drains are triggered manually, by the
connectivity monitor going offline → online, and optionally by a periodic
background thread. finalize_now pushes a single entry and raises
OfflineError instead of deferring when the device is offline.

One coordinator is built per process and owns all sync state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from storecheck.core.exceptions import OfflineError, TransientIOError
from storecheck.offline.queue import LocalSubmissionQueue

logger = logging.getLogger(__name__)

OFFLINE_ERROR = "Sem conexao: sincronizacao adiada"


@dataclass(frozen=True)
class SyncStatus:
    is_syncing: bool = False
    pending_count: int = 0
    last_sync_at: datetime | None = None
    last_error: str | None = None


class ConnectivityMonitor:
    """Holds the online/offline flag and notifies listeners on change."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._lock = threading.Lock()
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def set_online(self, online: bool) -> None:
        with self._lock:
            changed = online != self._online
            self._online = online
            listeners = list(self._listeners)
        if not changed:
            return
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in listeners:
            listener(online)


class SyncCoordinator:
    """Single owner of drain state for one device queue."""

    def __init__(self, queue: LocalSubmissionQueue, gateway, *,
                 monitor: ConnectivityMonitor | None = None,
                 run_triggers_in_background: bool = True,
                 clock: Callable[[], datetime] | None = None) -> None:
        self.queue = queue
        self.gateway = gateway
        self.monitor = monitor or ConnectivityMonitor()
        self._background = run_triggers_in_background
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._drain_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._status = SyncStatus(pending_count=queue.pending_count())
        self._listeners: list[Callable[[SyncStatus], None]] = []

        self._stop_event = threading.Event()
        self._periodic: threading.Thread | None = None
        self._unsubscribe_monitor = self.monitor.subscribe(self._on_connectivity_change)

    # ── Status ────────────────────────────────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        with self._state_lock:
            return self._status

    def subscribe(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        with self._state_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._state_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _publish(self, **changes) -> None:
        with self._state_lock:
            self._status = replace(self._status, **changes)
            status = self._status
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("Sync status listener failed")

    # ── Drain ─────────────────────────────────────────────────────────────

    def _push(self, item) -> None:
        """Send one entry. On failure the entry is marked failed and the error re-raised."""
        self.queue.mark_status(item.local_id, "syncing")
        try:
            self.gateway.finalize(item)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            self.queue.mark_status(item.local_id, "failed", error=error)
            logger.warning("Sync failed: %s", error, extra={"local_id": item.local_id})
            raise
        self.queue.mark_synced(item.local_id)

    def _publish_finished(self, last_error: str | None) -> None:
        pending = self.queue.pending_count()
        if self.monitor.is_online:
            self._publish(is_syncing=False, pending_count=pending,
                          last_sync_at=self._clock(), last_error=last_error)
        else:
            self._publish(is_syncing=False, pending_count=pending, last_error=OFFLINE_ERROR)

    def drain(self) -> dict:
        """
        Push every drainable entry to the server.

        Returns:
            {"synced": int, "failed": int}
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress; trigger dropped")
            return {"synced": 0, "failed": 0}

        synced = failed = 0
        last_error = None
        try:
            self.queue.flush()
            if not self.monitor.is_online:
                logger.info("Drain skipped: offline")
                return {"synced": 0, "failed": 0}

            items = self.queue.list_drainable()
            self._publish(is_syncing=True, pending_count=self.queue.pending_count())

            for item in items:
                try:
                    self._push(item)
                except Exception as exc:
                    failed += 1
                    last_error = str(exc) or exc.__class__.__name__
                    continue
                synced += 1
        finally:
            self._publish_finished(last_error)
            self._drain_lock.release()

        if synced or failed:
            logger.info("Drain finished: synced=%d failed=%d", synced, failed)
        return {"synced": synced, "failed": failed}

    def finalize_now(self, local_id: str, timeout: float = 30.0) -> bool:
        """
        Flush and push one submission right away, failing loudly.

        Waits for an in-flight drain first. Returns True when the server
        accepted the submission, False when that drain already synced it.

        Raises:
            KeyError: unknown ``local_id``.
            OfflineError: the device is offline; the entry stays queued.
            TransientIOError: a drain held the lock longer than ``timeout``.
            Whatever the gateway raised, after marking the entry failed.
        """
        self.queue.flush()
        if self.queue.get(local_id) is None:
            raise KeyError(local_id)
        if not self.monitor.is_online:
            self._publish(pending_count=self.queue.pending_count(), last_error=OFFLINE_ERROR)
            raise OfflineError(OFFLINE_ERROR)

        if not self._drain_lock.acquire(timeout=timeout):
            raise TransientIOError("Sync busy: another drain is still running")
        last_error = None
        try:
            item = self.queue.get(local_id)
            if item is None:
                return False
            self._publish(is_syncing=True)
            try:
                self._push(item)
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                raise
        finally:
            self._publish_finished(last_error)
            self._drain_lock.release()
        logger.info("Submission finalized on demand", extra={"local_id": local_id})
        return True

    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    # ── Triggers ──────────────────────────────────────────────────────────

    def _trigger(self) -> None:
        if self._background:
            threading.Thread(target=self.drain, name="storecheck-sync", daemon=True).start()
        else:
            self.drain()

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._trigger()
        else:
            self._publish(last_error=OFFLINE_ERROR)

    def start_periodic(self, interval_seconds: float) -> None:
        """Drain every ``interval_seconds`` on a daemon thread until stop()."""
        if self._periodic is not None and self._periodic.is_alive():
            return
        self._stop_event.clear()

        def _loop() -> None:
            while not self._stop_event.wait(interval_seconds):
                if self.monitor.is_online:
                    self.drain()

        self._periodic = threading.Thread(target=_loop, name="storecheck-sync-periodic", daemon=True)
        self._periodic.start()
        logger.info("Periodic sync started every %ss", interval_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        if self._periodic is not None:
            self._periodic.join(timeout=5)
            self._periodic = None
        self._unsubscribe_monitor()
