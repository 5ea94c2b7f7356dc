"""Per-tick outcome reporting for the scheduling engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class TickError:
    """A failure recorded while evaluating one step or one phase."""

    phase: str
    error: str
    step_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "phase": self.phase,
            "step_id": self.step_id,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class TickReport:
    """What a single poll tick did."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    evaluated: int = 0
    triggered: list[str] = field(default_factory=list)
    errors: list[TickError] = field(default_factory=list)

    def record_trigger(self, step_id: str) -> None:
        """Record a step started during this tick."""
        self.triggered.append(step_id)

    def add_error(self, phase: str, error: BaseException | str, step_id: str | None = None) -> None:
        """Record a failure without aborting the tick."""
        self.errors.append(TickError(phase=phase, error=str(error), step_id=step_id))

    def finish(self) -> None:
        """Mark the tick as finished."""
        self.finished_at = datetime.now(UTC)

    @property
    def has_errors(self) -> bool:
        """Check if there are any errors."""
        return len(self.errors) > 0

    @property
    def duration_ms(self) -> int | None:
        """Get duration in milliseconds."""
        if not self.finished_at:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "evaluated": self.evaluated,
            "triggered": list(self.triggered),
            "errors": [e.to_dict() for e in self.errors],
        }
