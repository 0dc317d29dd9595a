"""Typed domain representations shared by the price feed, services, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True, frozen=True)
class Quote:
    """Single quote snapshot returned by the broker."""

    instrument: str
    last_price: float
    close_price: float | None
    fetched_at: datetime


@dataclass(slots=True, frozen=True)
class PredictionBand:
    """Inclusive interval of acceptable predictions around a close price."""

    close_price: float
    low: float
    high: float

    @classmethod
    def around(cls, close_price: float, ratio: float) -> "PredictionBand":
        max_change = close_price * ratio
        return cls(
            close_price=close_price,
            low=close_price - max_change,
            high=close_price + max_change,
        )

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def describe(self) -> str:
        return f"{self.low:.2f} - {self.high:.2f}"


@dataclass(slots=True, frozen=True)
class AcceptedRow:
    """Import row that passed validation and is ready for insertion."""

    contest_id: int
    name: str
    value: float

    def as_tuple(self) -> tuple[int, str, float]:
        return (self.contest_id, self.name, self.value)


@dataclass(slots=True, frozen=True)
class RejectedRow:
    """Import row that was skipped, with the reason it was rejected."""

    line: int
    row: tuple[str, ...]
    reason: str


@dataclass(slots=True)
class BulkImportResult:
    """Outcome of validating a batch; valid rows commit even when others fail."""

    accepted: list[AcceptedRow] = field(default_factory=list)
    rejected: list[RejectedRow] = field(default_factory=list)
    band: PredictionBand | None = None

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)
