"""Data models for research run observability."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Research run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunStage(str, Enum):
    """Pipeline phases of a research run."""

    PLANNING = "planning"
    RESEARCHING = "researching"
    GAP_ANALYSIS = "gap_analysis"
    SYNTHESIZING = "synthesizing"
    VERIFYING = "verifying"


class RunRecord(BaseModel):
    """Record of one research run."""

    run_id: str
    question: str
    status: RunStatus = RunStatus.PENDING
    stage: RunStage | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    progress_current: int = 0
    progress_total: int = 0
    progress_message: str | None = None

    input_params: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if not self.started_at:
            return None
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "question": self.question[:100],
            "status": self.status.value,
            "stage": self.stage.value if self.stage else None,
            "progress": f"{self.progress_current}/{self.progress_total}",
            "message": self.progress_message,
            "duration_seconds": round(self.duration_seconds, 1) if self.duration_seconds is not None else None,
        }
