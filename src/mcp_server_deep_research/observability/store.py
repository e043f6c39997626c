"""In-process registry of research runs and their asyncio tasks."""

import asyncio
import logging
from datetime import UTC, datetime

from .models import RunRecord, RunStage, RunStatus

logger = logging.getLogger(__name__)


class RunRegistry:
    """Tracks run records and the tasks executing them, for listing and cancellation."""

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self._records: dict[str, RunRecord] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def create(self, record: RunRecord) -> RunRecord:
        self._records[record.run_id] = record
        self._prune()
        return record

    def get(self, run_id: str) -> RunRecord | None:
        return self._records.get(run_id)

    def find(self, prefix: str) -> str | None:
        """Resolve a full or prefix run id among running tasks."""
        for run_id in self._tasks:
            if run_id == prefix or run_id.startswith(prefix):
                return run_id
        return None

    def attach_task(self, run_id: str, task: asyncio.Task) -> None:
        self._tasks[run_id] = task

    def detach_task(self, run_id: str) -> None:
        self._tasks.pop(run_id, None)

    def update_status(self, run_id: str, status: RunStatus, error: str | None = None) -> None:
        record = self._records.get(run_id)
        if record is None:
            return
        record.status = status
        now = datetime.now(UTC)
        if status == RunStatus.RUNNING and record.started_at is None:
            record.started_at = now
        if record.is_terminal:
            record.completed_at = now
        if error is not None:
            record.error = error

    def update_progress(
        self, run_id: str, current: int, total: int, message: str | None = None, stage: RunStage | None = None
    ) -> None:
        record = self._records.get(run_id)
        if record is None:
            return
        record.progress_current = current
        record.progress_total = total
        if message is not None:
            record.progress_message = message
        if stage is not None:
            record.stage = stage

    def running(self) -> list[RunRecord]:
        return [r for r in self._records.values() if r.status == RunStatus.RUNNING]

    def cancel(self, prefix: str) -> str | None:
        """Cancel a running run by full or prefix id. Returns the full id, or None if not running."""
        run_id = self.find(prefix)
        if run_id is None:
            return None
        self._tasks[run_id].cancel()
        self.update_status(run_id, RunStatus.CANCELLED, error="Cancelled by user")
        logger.info(f"Cancelled research run {run_id}")
        return run_id

    def _prune(self) -> None:
        finished = [r for r in self._records.values() if r.is_terminal]
        for record in sorted(finished, key=lambda r: r.created_at)[: max(0, len(self._records) - self.max_history)]:
            self._records.pop(record.run_id, None)


_registry: RunRegistry | None = None


def get_run_registry() -> RunRegistry:
    """Return the process-wide run registry."""
    global _registry
    if _registry is None:
        _registry = RunRegistry()
    return _registry
