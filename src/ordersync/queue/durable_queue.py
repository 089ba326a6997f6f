"""
Durable, deduplicated queue of orders whose delivery has not been confirmed.

The queue lives in memory and is mirrored to a JSON array on disk after every
mutation, so a restarted process resumes with the last known pending set.
At most one entry exists per external id.

Persistence problems are never fatal:
  - a missing or unreadable file loads as an empty queue
  - a failed write is logged and the in-memory queue stays authoritative for
    the lifetime of the process
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError

from ordersync.models.order import CanonicalOrder

logger = logging.getLogger(__name__)


class DurableQueue:
    """
    Pending orders keyed by external id, persisted as JSON.

    Usage:
        queue = DurableQueue(Path("~/.ordersync/pending_queue.json"))
        queue.upsert(order)      # after a failed send
        queue.remove("42")       # after a confirmed send
        for order in queue.entries(): ...
    """

    def __init__(self, path: Path):
        self._path = Path(path).expanduser()
        self._entries: List[CanonicalOrder] = self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ── Persistence ───────────────────────────────────────────────────────────

    def load(self) -> List[CanonicalOrder]:
        """
        Read the persisted queue.

        Returns:
            Orders in persisted order. Empty when the file is absent or
            corrupt; individual unusable records are skipped.
        """
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Queue file %s unreadable, starting empty: %s", self._path, exc)
            return []

        if not isinstance(raw, list):
            logger.warning("Queue file %s is not a JSON array, starting empty", self._path)
            return []

        entries: List[CanonicalOrder] = []
        for record in raw:
            if not isinstance(record, dict):
                logger.warning("Skipping non-object queue record: %r", record)
                continue
            try:
                order = CanonicalOrder.from_queue_record(record)
            except ValidationError as exc:
                logger.warning("Skipping invalid queue record: %s", exc)
                continue
            # Keep one entry per id; a later duplicate wins.
            entries = [e for e in entries if e.external_id != order.external_id]
            entries.append(order)
        return entries

    def save(self, entries: Optional[Iterable[CanonicalOrder]] = None) -> None:
        """
        Atomically overwrite the persisted queue.

        Writes to a temp file in the same directory and renames it over the
        target, so a crash mid-write leaves either the old or the new file.
        """
        if entries is not None:
            self._entries = list(entries)
        records = [order.to_queue_record() for order in self._entries]

        tmp_name: Optional[str] = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=self._path.name,
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            logger.error("Failed to persist queue to %s: %s", self._path, exc)
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    # ── Mutation ──────────────────────────────────────────────────────────────

    def upsert(self, order: CanonicalOrder) -> bool:
        """
        Add or refresh the entry for ``order.external_id``.

        A new id is appended; an existing entry is replaced in place only when
        the lifecycle status differs. Always persists.

        Returns:
            True if the queue contents changed.
        """
        changed = False
        for i, existing in enumerate(self._entries):
            if existing.external_id == order.external_id:
                if existing.lifecycle_status != order.lifecycle_status:
                    self._entries[i] = order
                    changed = True
                break
        else:
            self._entries.append(order)
            changed = True

        self.save()
        return changed

    def remove(self, external_id: str) -> bool:
        """Drop the entry for ``external_id`` if present. Always persists."""
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.external_id != external_id]
        self.save()
        return len(self._entries) != before

    # ── Access ────────────────────────────────────────────────────────────────

    def entries(self) -> Tuple[CanonicalOrder, ...]:
        """Immutable snapshot of the pending entries."""
        return tuple(self._entries)

    def get(self, external_id: str) -> Optional[CanonicalOrder]:
        return next((e for e in self._entries if e.external_id == external_id), None)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, external_id: object) -> bool:
        return any(e.external_id == external_id for e in self._entries)
