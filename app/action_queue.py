"""
Persistent, ordered action queue.

- Stores pending outbound actions (now playing, scrobble, love, unlove) on disk
  as one JSON document, so nothing is lost on network errors or restarts.
- Every enqueue/commit is fsynced and atomically renamed into place before the
  call returns; the file on disk is always either the old or the new document.
- Sequence numbers come from a persisted counter and are never reused.
- API: enqueue(), peek_batch(), commit(), requeue(), size(), wait_for_work().
"""

from __future__ import annotations
import json
import logging
import os
import threading
from collections import OrderedDict
from typing import Iterable, List

from clock import Clock, SYSTEM_CLOCK
from models import Action, QueuedAction

log = logging.getLogger("queue")

FORMAT_VERSION = 1


class QueueStorageError(Exception):
    """The queue file could not be written; the in-memory change was rolled back."""


class ActionQueue:
    def __init__(self, path: str, clock: Clock = SYSTEM_CLOCK):
        self.path = path
        self.clock = clock
        self._lock = threading.Lock()
        self._work = threading.Condition(self._lock)
        self._pending: "OrderedDict[int, QueuedAction]" = OrderedDict()
        self._next_seq = 1
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                # Track in memory; every write will report QueueStorageError until this is fixed.
                log.error("Cannot create queue directory %s: %s", directory, e)
                return
        if not os.path.isfile(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            items = [QueuedAction.from_dict(d) for d in data["actions"]]
            next_seq = int(data["next_seq"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            # Keep the unreadable file for inspection and start empty.
            aside = f"{self.path}.corrupt"
            log.error("Queue file %s unreadable (%s); moved to %s", self.path, e, aside)
            try:
                os.replace(self.path, aside)
            except OSError as move_err:
                log.error("Could not move corrupt queue file aside: %s", move_err)
            # The old counter is lost; restart numbering above anything it could have issued.
            self._next_seq = int(self.clock.time() * 1000)
            return

        for item in sorted(items, key=lambda qa: qa.seq):
            self._pending[item.seq] = item
        # Never hand out a number at or below one already on disk.
        highest = max(self._pending, default=0)
        self._next_seq = max(next_seq, highest + 1)
        log.info("Loaded %s pending action(s) from %s", len(self._pending), self.path)

    def _save(self) -> None:
        # Write atomically to avoid corruption
        tmp = f"{self.path}.tmp"
        doc = {
            "version": FORMAT_VERSION,
            "next_seq": self._next_seq,
            "actions": [qa.to_dict() for qa in self._pending.values()],
        }
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
            self._fsync_dir()
        except OSError as e:
            raise QueueStorageError(f"cannot write {self.path}: {e}") from e

    def _fsync_dir(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd = os.open(directory, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            pass  # not supported on every platform/filesystem
        finally:
            os.close(fd)

    # -------- public API --------
    def enqueue(self, action: Action) -> QueuedAction:
        """Append durably. Raises QueueStorageError if the write failed."""
        with self._lock:
            item = QueuedAction(seq=self._next_seq, enqueued_at=self.clock.time(), action=action)
            self._pending[item.seq] = item
            self._next_seq += 1
            try:
                self._save()
            except QueueStorageError:
                del self._pending[item.seq]
                self._next_seq -= 1
                raise
            self._work.notify_all()
        log.debug("Enqueued #%s %s: %s", item.seq, action.kind.value, action.track.label())
        return item

    def peek_batch(self, max_n: int) -> List[QueuedAction]:
        """Oldest first, without removing anything."""
        with self._lock:
            return [qa for _, qa in zip(range(max_n), self._pending.values())]

    def commit(self, seqs: Iterable[int]) -> None:
        """Durably remove actions. Unknown or already-committed seqs are ignored."""
        with self._lock:
            removed = [self._pending.pop(s) for s in seqs if s in self._pending]
            if not removed:
                return
            try:
                self._save()
            except QueueStorageError:
                for qa in removed:
                    self._pending[qa.seq] = qa
                self._pending = OrderedDict(sorted(self._pending.items()))
                raise

    def requeue(self, seqs: Iterable[int]) -> None:
        # Items stay pending until committed; nothing to undo.
        return None

    def size(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_for_work(self, timeout: float | None = None) -> bool:
        """Block until something is pending, wake() is called, or timeout. Returns non-empty."""
        with self._work:
            if not self._pending:
                self._work.wait(timeout)
            return bool(self._pending)

    def wake(self) -> None:
        with self._work:
            self._work.notify_all()
