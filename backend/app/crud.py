from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.orm import Session

from app.domain import AcceptedRow
from app.repositories import ContestRepository, PriceRepository

from .models import Contest, Prediction, PriceSample


def get_active_contest(session: Session) -> Contest | None:
    return ContestRepository(session).get_active_contest()


def create_contest(session: Session, name: str | None) -> Contest:
    return ContestRepository(session).create_contest(name)


def list_contests(session: Session) -> list[Contest]:
    return ContestRepository(session).list_contests()


def ensure_default_contest(session: Session) -> Contest | None:
    return ContestRepository(session).ensure_default_contest()


def repair_active_contest(session: Session) -> Contest | None:
    return ContestRepository(session).repair_active_contest()


def add_prediction(session: Session, contest_id: int, name: str, value: float) -> Prediction:
    return ContestRepository(session).add_prediction(contest_id, name, value)


def add_predictions(session: Session, rows: Iterable[AcceptedRow]) -> list[Prediction]:
    return ContestRepository(session).add_predictions(rows)


def delete_prediction(session: Session, prediction_id: int) -> bool:
    return ContestRepository(session).delete_prediction(prediction_id)


def list_predictions(session: Session, contest_id: int) -> list[Prediction]:
    return ContestRepository(session).list_predictions(contest_id)


def record_price_sample(
    session: Session, price: float, fetched_at: datetime | None = None
) -> PriceSample:
    return PriceRepository(session).record_sample(price, fetched_at)


def latest_price_sample(session: Session) -> PriceSample | None:
    return PriceRepository(session).latest_sample()
