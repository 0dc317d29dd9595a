"""Leaderboard ranking of predictions against a reference price."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol, TypeVar

from app.errors import NoReferencePriceError

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RankablePrediction(Protocol):
    id: int | None
    predicted_value: float
    submitted_at: datetime | None


PredictionT = TypeVar("PredictionT", bound=RankablePrediction)


def _submitted_key(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH
    # SQLite hands back naive timestamps even for timezone-aware columns.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def top_n(
    predictions: Iterable[PredictionT],
    reference_price: float | None,
    n: int,
) -> list[PredictionT]:
    """Return at most ``n`` predictions closest to ``reference_price``.

    Equal distances are broken by earliest submission, then lowest id. Raises
    :class:`NoReferencePriceError` when no reference price is available.
    """

    if reference_price is None or not math.isfinite(reference_price):
        raise NoReferencePriceError("No reference price is available for ranking")
    if n <= 0:
        return []

    ranked = sorted(
        predictions,
        key=lambda prediction: (
            abs(prediction.predicted_value - reference_price),
            _submitted_key(prediction.submitted_at),
            prediction.id if prediction.id is not None else 0,
        ),
    )
    return ranked[:n]


__all__ = ["RankablePrediction", "top_n"]
