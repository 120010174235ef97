"""
Audit sink for authorization decisions.

``record()`` is called on the evaluation path, so it only appends to an
in-memory buffer under a short lock. Writers (log, database) receive the
buffered entries in batches when ``flush()`` runs, either from the scheduler
or on shutdown.

Overflow policy: when the buffer is full the oldest ordinary entry is
dropped. Broken-rule entries are never dropped; if the buffer holds nothing
else it grows past its capacity instead.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from rowguard.services.policy.types import AuditEntry, Outcome

logger = logging.getLogger(__name__)


class AuditWriter(Protocol):
    """Destination for flushed audit entries."""

    async def write(self, entries: list[AuditEntry]) -> None: ...


class AuditSink:
    """Bounded, order-preserving buffer of audit entries."""

    def __init__(self, capacity: int = 1000, writers: Iterable[AuditWriter] = ()):
        if capacity < 1:
            raise ValueError("Audit buffer capacity must be at least 1")
        self.capacity = capacity
        self.writers: list[AuditWriter] = list(writers)
        self._buffer: deque[AuditEntry] = deque()
        self._lock = threading.Lock()
        self.recorded = 0
        self.dropped = 0

    def add_writer(self, writer: AuditWriter) -> None:
        self.writers.append(writer)

    def record(self, entry: AuditEntry) -> None:
        """Enqueue an entry. Never blocks on I/O and never raises on overflow."""
        dropped_now = False
        with self._lock:
            if len(self._buffer) >= self.capacity:
                dropped_now = self._evict_oldest_ordinary()
            self._buffer.append(entry)
            self.recorded += 1
            dropped_total = self.dropped

        if dropped_now and (dropped_total == 1 or dropped_total % 100 == 0):
            logger.warning(
                f"[audit] Buffer full ({self.capacity}), dropped {dropped_total} entries so far"
            )

    def _evict_oldest_ordinary(self) -> bool:
        for index, queued in enumerate(self._buffer):
            if not queued.is_broken_rule:
                del self._buffer[index]
                self.dropped += 1
                return True
        return False

    def pending(self) -> list[AuditEntry]:
        """Copy of the buffered entries, oldest first."""
        with self._lock:
            return list(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def drain(self) -> list[AuditEntry]:
        """Remove and return every buffered entry, oldest first."""
        with self._lock:
            batch = list(self._buffer)
            self._buffer.clear()
        return batch

    def _requeue(self, entries: list[AuditEntry]) -> None:
        with self._lock:
            self._buffer.extendleft(reversed(entries))

    async def flush(self) -> int:
        """
        Hand every buffered entry to the writers.

        If a writer fails, the broken-rule entries of the batch go back to
        the front of the buffer so they are retried on the next flush.
        Returns the number of entries drained.
        """
        batch = self.drain()
        if not batch:
            return 0

        failed = False
        for writer in self.writers:
            try:
                await writer.write(batch)
            except Exception as e:
                failed = True
                logger.error(
                    f"[audit] {type(writer).__name__} failed to write {len(batch)} entries: {e}"
                )

        if failed:
            keep = [entry for entry in batch if entry.is_broken_rule]
            if keep:
                self._requeue(keep)
                logger.warning(f"[audit] Re-queued {len(keep)} broken-rule entries")

        return len(batch)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            pending = len(self._buffer)
            broken = sum(1 for entry in self._buffer if entry.is_broken_rule)
        return {
            "capacity": self.capacity,
            "pending": pending,
            "pending_broken_rules": broken,
            "recorded": self.recorded,
            "dropped": self.dropped,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Writers
# ─────────────────────────────────────────────────────────────────────────────


def _describe(entry: AuditEntry) -> str:
    subject = entry.subject_id or "anonymous"
    parts = [
        f"{entry.outcome.value.upper()} {subject} {entry.resource_type}.{entry.operation.value}",
        f"reason={entry.reason!r}",
    ]
    if entry.matched_rule:
        parts.append(f"rule={entry.matched_rule}")
    if entry.broken_rules:
        parts.append(f"broken={','.join(entry.broken_rules)}")
    if entry.scope == "collection":
        parts.append(f"rows={entry.row_count}")
    return " ".join(parts)


class LoggingAuditWriter:
    """Writes entries to the application log; broken rules at ERROR."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logging.getLogger("rowguard.audit")

    async def write(self, entries: list[AuditEntry]) -> None:
        for entry in entries:
            if entry.is_broken_rule:
                level = logging.ERROR
            elif entry.outcome is Outcome.DENY:
                level = logging.WARNING
            elif entry.admin_elevated:
                level = logging.INFO
            else:
                level = logging.DEBUG
            self._log.log(level, f"[audit] {_describe(entry)}")


class DatabaseAuditWriter:
    """Persists entries into ``policy_audit_log``.

    Denials, admin-elevated allows and broken-rule entries are always kept;
    ordinary allows only when ``persist_allows`` is set.
    """

    def __init__(self, session_maker: Callable[[], Any], *, persist_allows: bool = False):
        self._session_maker = session_maker
        self.persist_allows = persist_allows

    def _keep(self, entry: AuditEntry) -> bool:
        return (
            self.persist_allows
            or entry.outcome is Outcome.DENY
            or entry.admin_elevated
            or entry.is_broken_rule
        )

    async def write(self, entries: list[AuditEntry]) -> None:
        from rowguard.domain.audit_log_operations import audit_log_ops

        rows = [entry for entry in entries if self._keep(entry)]
        if not rows:
            return
        async with self._session_maker() as session:
            await audit_log_ops.bulk_create(session, rows)
            await session.commit()
        logger.debug(f"[audit] Persisted {len(rows)} entries")
