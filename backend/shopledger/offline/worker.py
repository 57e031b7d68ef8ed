# backend/shopledger/offline/worker.py
"""
Queue drain.

One consumer pulls queued actions strictly one at a time in qid order. The first
failure stops the drain and leaves that entry and everything after it queued,
so a dependent action is never replayed ahead of the action it depends on.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import ConnectivityError, ServerRejectedError
from .store import FAILURE_REJECTED, FAILURE_TRANSIENT

if TYPE_CHECKING:
    from .engine import ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    replayed: int = 0
    remaining: int = 0
    stopped_at: int | None = None
    skipped: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "replayed": self.replayed,
            "remaining": self.remaining,
            "stopped_at": self.stopped_at,
            "skipped": self.skipped,
            "error": self.error,
        }


class SyncWorker:
    """Shared by manual sync and the offline->online transition. Drains never overlap."""

    def __init__(self, engine: "ReconciliationEngine"):
        self.engine = engine
        self._lock = threading.Lock()

    def drain(self) -> DrainResult:
        queue = self.engine.store.queue

        if not self._lock.acquire(blocking=False):
            logger.info("Drain already running; skipping")
            return DrainResult(remaining=queue.count(), skipped=True)

        try:
            if not self.engine.online:
                return DrainResult(remaining=queue.count(), skipped=True)

            result = DrainResult()
            while True:
                # re-read each time: replaying a create rewrites later entries
                action = queue.first()
                if action is None:
                    break

                try:
                    record = self.engine.api.request(action.method, action.path, action.body)
                except ConnectivityError as exc:
                    queue.record_failure(action.qid, error=str(exc), status=None, failure=FAILURE_TRANSIENT)
                    result.stopped_at = action.qid
                    result.error = str(exc)
                    logger.info("Drain stopped at qid=%s (%s): %s", action.qid, FAILURE_TRANSIENT, exc)
                    break
                except ServerRejectedError as exc:
                    queue.record_failure(
                        action.qid, error=exc.message, status=exc.status, failure=FAILURE_REJECTED
                    )
                    result.stopped_at = action.qid
                    result.error = str(exc)
                    logger.warning(
                        "Drain stopped at qid=%s %s %s (%s): %s",
                        action.qid, action.method, action.path, FAILURE_REJECTED, exc,
                    )
                    break

                queue.remove(action.qid)
                result.replayed += 1
                logger.info("Replayed qid=%s %s %s", action.qid, action.method, action.path)

                if action.creates and isinstance(record, dict) and "id" in record:
                    self.engine.confirm_created(action.kind, action.creates, record)

            # reload whether the queue emptied or stopped partway
            self.engine.load_all()
            result.remaining = queue.count()
            return result
        finally:
            self._lock.release()
