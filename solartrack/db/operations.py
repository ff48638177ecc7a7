"""In-memory tracking of long-running sync operations for the status API."""
from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("solartrack.sync")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _duration_ms(started_at: str, finished_at: str) -> int:
    try:
        start = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
        end = datetime.fromisoformat(finished_at.replace("Z", "+00:00"))
    except ValueError:
        return 0
    return max(0, int((end - start).total_seconds() * 1000))


class OperationTracker:
    """Bounded history of operation snapshots, newest first."""

    def __init__(self, max_history: int = 40):
        self._lock = asyncio.Lock()
        self._operations: dict[str, dict[str, Any]] = {}
        self._order: list[str] = []
        self._active: set[str] = set()
        self._max_history = max_history

    async def start(
        self,
        kind: str,
        project_id: str,
        trigger: str = "api",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        op_id = f"OP-{uuid.uuid4()}"
        now = _now_iso()
        payload = {
            "id": op_id,
            "kind": kind,
            "projectId": project_id,
            "trigger": trigger,
            "status": "running",
            "phase": "queued",
            "message": "",
            "startedAt": now,
            "updatedAt": now,
            "finishedAt": "",
            "durationMs": 0,
            "progress": {},
            "counters": {},
            "stats": {},
            "metadata": metadata or {},
            "error": "",
        }
        async with self._lock:
            self._operations[op_id] = payload
            self._order.insert(0, op_id)
            self._active.add(op_id)
            for stale_id in self._order[self._max_history:]:
                self._operations.pop(stale_id, None)
                self._active.discard(stale_id)
            del self._order[self._max_history:]
        logger.info("Operation started [%s] %s (project=%s trigger=%s)", op_id, kind, project_id, trigger)
        return op_id

    async def update(
        self,
        operation_id: str | None,
        *,
        phase: str | None = None,
        message: str | None = None,
        progress: dict[str, Any] | None = None,
        counters: dict[str, Any] | None = None,
    ) -> None:
        if not operation_id:
            return
        async with self._lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            if phase:
                operation["phase"] = phase
            if message is not None:
                operation["message"] = message
            if progress:
                operation["progress"].update(progress)
            if counters:
                operation["counters"].update(counters)
            operation["updatedAt"] = _now_iso()
        if message:
            logger.info("Operation update [%s] %s - %s", operation_id, phase or "progress", message)

    async def finish(
        self,
        operation_id: str | None,
        *,
        status: str,
        stats: dict[str, Any] | None = None,
        error: str = "",
    ) -> None:
        if not operation_id:
            return
        now = _now_iso()
        async with self._lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            operation["status"] = status
            operation["phase"] = status
            operation["updatedAt"] = now
            operation["finishedAt"] = now
            operation["durationMs"] = _duration_ms(operation["startedAt"], now)
            if stats:
                operation["stats"].update(stats)
            if error:
                operation["error"] = error
            self._active.discard(operation_id)

        if status == "failed":
            logger.error("Operation failed [%s]: %s", operation_id, error)
        else:
            logger.info("Operation finished [%s] status=%s", operation_id, status)

    async def list(self, limit: int = 20) -> list[dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(self._operations[op_id]) for op_id in self._order[: max(1, limit)]]

    async def get(self, operation_id: str) -> dict[str, Any] | None:
        async with self._lock:
            operation = self._operations.get(operation_id)
            return copy.deepcopy(operation) if operation else None

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            active = [copy.deepcopy(self._operations[op_id]) for op_id in self._order if op_id in self._active]
            recent = [copy.deepcopy(self._operations[op_id]) for op_id in self._order[:5]]
            return {
                "activeOperationCount": len(active),
                "activeOperations": active,
                "recentOperations": recent,
                "trackedOperationCount": len(self._operations),
            }
