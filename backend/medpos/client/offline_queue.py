# Overview: Durable till-side queue of sales awaiting commit; replays them in order once online.

"""
Offline Queue

WHY: The till must keep selling when the network drops. A sale that cannot
be committed is written to a local SQLite file and replayed later with the
same idempotency key, so a replay can never produce a second sale.

DESIGN PRINCIPLES:
- Entries survive process restarts (file-backed, committed per change)
- Replay is strictly in creation order per drawer
- Deterministic rejections go straight to the dead-letter list
- Transient failures retry with capped exponential backoff; while an entry
  waits, later entries of the same drawer wait with it
- Nothing is dropped silently: dead letters stay until requeued or discarded
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, func
from sqlalchemy.orm import declarative_base, sessionmaker

from ..signals import queue_drained
from ..time_utils import to_utc_z, utcnow
from ..validation import DETERMINISTIC_ERRORS, NotFoundError, SubmissionTimeout, TransientError
from .transport import SaleIntent, new_idempotency_key

logger = logging.getLogger(__name__)

QueueBase = declarative_base()

ENTRY_PENDING = "pending"
ENTRY_DEAD_LETTER = "dead_letter"

RECENT_SYNCED_LIMIT = 50


class SyncQueueEntry(QueueBase):
    """One sale waiting to be committed on the server."""
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    drawer_id = Column(Integer, nullable=False, index=True)
    session_id = Column(Integer, nullable=False)
    label = Column(String(128), nullable=True)

    payload_json = Column(Text, nullable=False)

    status = Column(String(16), nullable=False, default=ENTRY_PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_error_code = Column(String(32), nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_intent(self) -> SaleIntent:
        return SaleIntent.from_dict(json.loads(self.payload_json))

    def to_dict(self) -> dict:
        return {
            "idempotency_key": self.idempotency_key,
            "drawer_id": self.drawer_id,
            "session_id": self.session_id,
            "label": self.label,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_error_code": self.last_error_code,
            "next_attempt_at": to_utc_z(self.next_attempt_at) if self.next_attempt_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class RecentSynced(QueueBase):
    """Short history of replayed sales, shown on the till's sync panel."""
    __tablename__ = "recent_synced"

    id = Column(Integer, primary_key=True, autoincrement=True)
    idempotency_key = Column(String(64), nullable=False)
    drawer_id = Column(Integer, nullable=False)
    label = Column(String(128), nullable=True)
    sale_id = Column(Integer, nullable=False)
    sale_number = Column(Integer, nullable=False)
    synced_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "idempotency_key": self.idempotency_key,
            "drawer_id": self.drawer_id,
            "label": self.label,
            "sale_id": self.sale_id,
            "sale_number": self.sale_number,
            "synced_at": to_utc_z(self.synced_at),
        }


@dataclass(frozen=True)
class QueuedReceipt:
    """Returned instead of a sale when the sale was queued for later commit."""
    idempotency_key: str
    drawer_id: int
    session_id: int
    label: Optional[str]
    queued_at: datetime


@dataclass
class DrainResult:
    committed: list = field(default_factory=list)      # CommittedSale
    dead_lettered: list = field(default_factory=list)  # idempotency keys
    deferred: list = field(default_factory=list)       # idempotency keys waiting on backoff
    remaining: int = 0

    @property
    def ok(self) -> bool:
        return not self.dead_lettered and not self.deferred

    def to_dict(self) -> dict:
        return {
            "committed": [s.idempotency_key for s in self.committed],
            "dead_lettered": list(self.dead_lettered),
            "deferred": list(self.deferred),
            "remaining": self.remaining,
        }


class OfflineQueue:
    """
    File-backed queue of sale intents.

    Args:
        store_url: SQLAlchemy URL of the queue database (sqlite file)
        max_attempts: transient failures tolerated before dead-lettering
        backoff_base: seconds; wait after n failures is base * 2**n
        backoff_max: cap on the wait between attempts
        clock: returns naive UTC now (injectable for tests)
    """

    def __init__(
        self,
        store_url: str,
        *,
        max_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 300.0,
        clock: Callable[[], datetime] | None = None,
    ):
        connect_args = {"check_same_thread": False} if store_url.startswith("sqlite") else {}
        self.engine = create_engine(store_url, connect_args=connect_args)
        QueueBase.metadata.create_all(self.engine)
        self._Session = sessionmaker(bind=self.engine, expire_on_commit=False)

        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.clock = clock or utcnow
        self._drain_lock = threading.Lock()

    @classmethod
    def from_config(cls, config, **kwargs) -> "OfflineQueue":
        return cls(
            config.queue_url,
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
            **kwargs,
        )

    def close(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def enqueue(self, intent: SaleIntent, *, last_error: Exception | None = None) -> QueuedReceipt:
        """
        Persist a sale intent for later replay.

        The intent keeps its idempotency key (one is generated if missing).
        Pass the failure that caused queueing so a timed-out request is
        looked up before it is resent.
        """
        if not intent.idempotency_key:
            intent = intent.with_key(new_idempotency_key())

        now = self.clock()
        entry = SyncQueueEntry(
            idempotency_key=intent.idempotency_key,
            drawer_id=intent.drawer_id,
            session_id=intent.session_id,
            label=intent.label,
            payload_json=json.dumps(intent.to_dict(), default=str),
            status=ENTRY_PENDING,
            attempts=0,
            last_error=str(last_error) if last_error else None,
            last_error_code=getattr(last_error, "code", None) if last_error else None,
            created_at=now,
        )

        with self._Session.begin() as s:
            s.add(entry)

        logger.info(
            "Queued sale %s for drawer %s (session %s)",
            intent.idempotency_key, intent.drawer_id, intent.session_id,
        )
        return QueuedReceipt(
            idempotency_key=intent.idempotency_key,
            drawer_id=intent.drawer_id,
            session_id=intent.session_id,
            label=intent.label,
            queued_at=now,
        )

    # =========================================================================
    # DRAIN
    # =========================================================================

    def _backoff(self, attempts: int) -> timedelta:
        return timedelta(seconds=min(self.backoff_base * (2 ** attempts), self.backoff_max))

    def drain(self, transport) -> DrainResult:
        """
        Replay pending entries, oldest first within each drawer.

        Only one drain runs at a time; a second caller waits for the first.
        """
        with self._drain_lock:
            result = DrainResult()
            now = self.clock()

            with self._Session() as s:
                pending = s.query(SyncQueueEntry.id, SyncQueueEntry.drawer_id).filter_by(
                    status=ENTRY_PENDING
                ).order_by(SyncQueueEntry.created_at, SyncQueueEntry.id).all()

            by_drawer: dict[int, list[int]] = {}
            for entry_id, drawer_id in pending:
                by_drawer.setdefault(drawer_id, []).append(entry_id)

            for drawer_id, entry_ids in by_drawer.items():
                for entry_id in entry_ids:
                    if not self._replay(entry_id, transport, result, now):
                        # Head of this drawer is waiting; keep the rest behind it
                        break

            result.remaining = self.pending_count()

        queue_drained.send(self, result=result)
        return result

    def _replay(self, entry_id: int, transport, result: DrainResult, now: datetime) -> bool:
        """Replay one entry. Returns False when the drawer must stop here."""
        with self._Session.begin() as s:
            entry = s.get(SyncQueueEntry, entry_id)
            if entry is None or entry.status != ENTRY_PENDING:
                return True

            key = entry.idempotency_key
            if entry.next_attempt_at and entry.next_attempt_at > now:
                result.deferred.append(key)
                return False

            try:
                sale = None
                if entry.last_error_code == SubmissionTimeout.code:
                    sale = transport.lookup(key)
                if sale is None:
                    sale = transport.commit(entry.to_intent())
            except DETERMINISTIC_ERRORS as e:
                entry.attempts += 1
                entry.status = ENTRY_DEAD_LETTER
                entry.last_error = str(e)
                entry.last_error_code = e.code
                entry.next_attempt_at = None
                logger.warning("Sale %s rejected by server, moved to dead letters: %s", key, e)
                result.dead_lettered.append(key)
                return True
            except TransientError as e:
                entry.attempts += 1
                entry.last_error = str(e)
                entry.last_error_code = e.code
                if entry.attempts >= self.max_attempts:
                    entry.status = ENTRY_DEAD_LETTER
                    entry.next_attempt_at = None
                    logger.error("Sale %s failed %d times, moved to dead letters: %s", key, entry.attempts, e)
                    result.dead_lettered.append(key)
                    return True
                entry.next_attempt_at = now + self._backoff(entry.attempts)
                logger.info("Sale %s replay failed (attempt %d), retrying after %s", key, entry.attempts, entry.next_attempt_at)
                result.deferred.append(key)
                return False

            s.delete(entry)
            s.add(RecentSynced(
                idempotency_key=key,
                drawer_id=entry.drawer_id,
                label=entry.label,
                sale_id=sale.id,
                sale_number=sale.sale_number,
                synced_at=now,
            ))
            s.flush()
            self._trim_history(s)

        logger.info("Sale %s synced as sale %s%s", key, sale.id, " (replayed)" if sale.replayed else "")
        result.committed.append(sale)
        return True

    def _trim_history(self, s) -> None:
        cutoff = s.query(RecentSynced.id).order_by(
            RecentSynced.id.desc()
        ).offset(RECENT_SYNCED_LIMIT).limit(1).scalar()
        if cutoff is not None:
            s.query(RecentSynced).filter(RecentSynced.id <= cutoff).delete(synchronize_session=False)

    # =========================================================================
    # INSPECTION & MANUAL RECONCILIATION
    # =========================================================================

    def pending_count(self, drawer_id: int | None = None) -> int:
        with self._Session() as s:
            query = s.query(func.count(SyncQueueEntry.id)).filter_by(status=ENTRY_PENDING)
            if drawer_id is not None:
                query = query.filter_by(drawer_id=drawer_id)
            return query.scalar() or 0

    def next_retry_at(self) -> datetime | None:
        """Earliest backoff expiry still in the future, or None when nothing is waiting."""
        with self._Session() as s:
            return s.query(func.min(SyncQueueEntry.next_attempt_at)).filter(
                SyncQueueEntry.status == ENTRY_PENDING,
                SyncQueueEntry.next_attempt_at > self.clock(),
            ).scalar()

    def pending(self, drawer_id: int | None = None) -> list[dict]:
        with self._Session() as s:
            query = s.query(SyncQueueEntry).filter_by(status=ENTRY_PENDING)
            if drawer_id is not None:
                query = query.filter_by(drawer_id=drawer_id)
            return [e.to_dict() for e in query.order_by(SyncQueueEntry.created_at, SyncQueueEntry.id).all()]

    def dead_letters(self) -> list[dict]:
        with self._Session() as s:
            entries = s.query(SyncQueueEntry).filter_by(
                status=ENTRY_DEAD_LETTER
            ).order_by(SyncQueueEntry.created_at, SyncQueueEntry.id).all()
            return [e.to_dict() for e in entries]

    def _dead_letter(self, s, key: str) -> SyncQueueEntry:
        entry = s.query(SyncQueueEntry).filter_by(idempotency_key=key, status=ENTRY_DEAD_LETTER).first()
        if entry is None:
            raise NotFoundError(f"No dead-lettered sale with key {key}")
        return entry

    def requeue(self, key: str) -> None:
        """Put a dead-lettered entry back in line with a fresh attempt budget."""
        with self._Session.begin() as s:
            entry = self._dead_letter(s, key)
            entry.status = ENTRY_PENDING
            entry.attempts = 0
            entry.next_attempt_at = None
        logger.info("Sale %s requeued from dead letters", key)

    def discard(self, key: str) -> dict:
        """Drop a dead-lettered entry for good. Pending entries cannot be discarded."""
        with self._Session.begin() as s:
            entry = self._dead_letter(s, key)
            snapshot = entry.to_dict()
            s.delete(entry)
        logger.warning(
            "Sale %s discarded from dead letters (drawer %s, last error: %s)",
            key, snapshot["drawer_id"], snapshot["last_error"],
        )
        return snapshot

    def recent_synced(self, limit: int = 10) -> list[dict]:
        with self._Session() as s:
            rows = s.query(RecentSynced).order_by(RecentSynced.id.desc()).limit(limit).all()
            return [r.to_dict() for r in rows]
