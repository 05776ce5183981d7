# Overview: Till-side sale submission; commits online or queues offline, never both.

"""
Sale Submitter

submit() has exactly two successful outcomes:
- CommittedSale: the server committed (or replayed) the sale
- QueuedReceipt: the sale is in the offline queue and will be replayed

Deterministic rejections (validation, insufficient payment, closed session)
propagate to the caller, who is still at the till and can fix the cart.

start_sync_loop() keeps the queue moving without the caller: it replays
once the probe reports the server reachable again, and again whenever a
backed-off entry comes due.
"""

from __future__ import annotations

import logging
import threading

from ..validation import SubmissionTimeout, TransientError
from .offline_queue import OfflineQueue, QueuedReceipt
from .transport import CommittedSale, HttpConnectivityProbe, HttpSaleTransport, SaleIntent, new_idempotency_key

logger = logging.getLogger(__name__)


class SaleSubmitter:
    def __init__(self, transport, queue: OfflineQueue, probe=None):
        self.transport = transport
        self.queue = queue
        self.probe = probe
        self._worker: threading.Thread | None = None
        self._worker_lock = threading.Lock()
        self._draining = False
        self._drain_again = False
        self._sync_thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @classmethod
    def from_config(cls, config, owner_id: str) -> "SaleSubmitter":
        """Wire the HTTP transport, ping probe and queue file from a ClientConfig."""
        return cls(
            HttpSaleTransport(config.server_url, owner_id, timeout=config.request_timeout),
            OfflineQueue.from_config(config),
            HttpConnectivityProbe(config.server_url, timeout=config.probe_timeout),
        )

    def close(self) -> None:
        self.stop()
        self.transport.close()
        self.queue.close()
        if self.probe is not None:
            self.probe.close()

    def _is_online(self) -> bool:
        return self.probe is None or self.probe.is_online()

    def submit(self, intent: SaleIntent) -> CommittedSale | QueuedReceipt:
        if not intent.idempotency_key:
            intent = intent.with_key(new_idempotency_key())

        # Earlier sales of this drawer are still queued; stay behind them
        if self.queue.pending_count(intent.drawer_id):
            receipt = self.queue.enqueue(intent)
            self.drain_in_background()
            return receipt

        if not self._is_online():
            logger.info("Offline, queueing sale %s", intent.idempotency_key)
            return self.queue.enqueue(intent)

        try:
            return self.transport.commit(intent)
        except TransientError as e:
            logger.warning("Commit of sale %s failed (%s), checking server before queueing", intent.idempotency_key, e)
            existing = self._lookup(intent.idempotency_key)
            if existing is not None:
                return existing
            # Record the timeout so the replay looks the key up again first
            last_error = e if isinstance(e, SubmissionTimeout) else None
            return self.queue.enqueue(intent, last_error=last_error)

    def _lookup(self, key: str) -> CommittedSale | None:
        try:
            return self.transport.lookup(key)
        except TransientError:
            return None

    # =========================================================================
    # BACKGROUND DRAIN
    # =========================================================================

    def drain(self):
        """Replay the queue now, in the calling thread."""
        if not self._is_online():
            return None
        return self.queue.drain(self.transport)

    def drain_in_background(self) -> threading.Thread | None:
        """
        Start a daemon thread that replays the queue.

        Returns the thread, or None when a drain worker is already running.
        The running worker then makes one more pass before it exits, so
        entries queued during its pass are not left behind.
        """
        with self._worker_lock:
            if self._draining:
                self._drain_again = True
                return None
            self._draining = True
            self._drain_again = False
            self._worker = threading.Thread(target=self._drain_worker, name="medpos-queue-drain", daemon=True)
            self._worker.start()
            return self._worker

    def _drain_worker(self) -> None:
        while True:
            try:
                result = self.drain()
            except Exception:
                logger.exception("Background queue drain failed")
                result = None
            else:
                if result is not None and not result.ok:
                    logger.info("Background drain finished: %s", result.to_dict())

            # Progress with entries left means a drawer head moved; keep going
            progressed = result is not None and result.remaining > 0 and bool(result.committed or result.dead_lettered)
            with self._worker_lock:
                again = self._drain_again and result is not None
                self._drain_again = False
                if not (again or progressed):
                    self._draining = False
                    return

    # =========================================================================
    # SYNC LOOP
    # =========================================================================

    def start_sync_loop(self, interval: float = 5.0) -> threading.Thread:
        """
        Poll the probe and replay queued sales whenever the server is reachable.

        Wakes every `interval` seconds, or sooner when a backed-off entry
        comes due. Calling it again while the loop runs returns the same thread.
        """
        with self._worker_lock:
            if self._sync_thread is not None and self._sync_thread.is_alive():
                return self._sync_thread
            self._stop_event.clear()
            self._sync_thread = threading.Thread(
                target=self._sync_loop, args=(interval,), name="medpos-sync-loop", daemon=True
            )
            self._sync_thread.start()
            return self._sync_thread

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop the sync loop and wait for it and any running drain to exit."""
        self._stop_event.set()
        for thread in (self._sync_thread, self._worker):
            if thread is not None:
                thread.join(timeout)
        self._sync_thread = None

    def _sync_loop(self, interval: float) -> None:
        was_online = None
        while not self._stop_event.is_set():
            online = False
            try:
                online = self._is_online()
                if online and was_online is False:
                    logger.info("Connection restored, replaying queued sales")
                elif not online and was_online:
                    logger.warning("Connection lost, sales will be queued")
                was_online = online
                if online and self.queue.pending_count():
                    self.drain_in_background()
            except Exception:
                logger.exception("Sync loop tick failed")
            self._stop_event.wait(self._next_wait(interval, online))

    def _next_wait(self, interval: float, online: bool) -> float:
        if not online:
            return interval
        due = self.queue.next_retry_at()
        if due is None:
            return interval
        return max(0.0, min(interval, (due - self.queue.clock()).total_seconds()))
