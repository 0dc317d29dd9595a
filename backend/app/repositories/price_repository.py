"""Append-only price sample log."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from app.models import PriceSample


class PriceRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def record_sample(self, price: float, fetched_at: datetime | None = None) -> PriceSample:
        sample = PriceSample(price=price)
        if fetched_at is not None:
            sample.fetched_at = fetched_at
        self._session.add(sample)
        self._session.flush()
        return sample

    def latest_sample(self) -> PriceSample | None:
        query = select(PriceSample).order_by(desc(PriceSample.fetched_at), desc(PriceSample.id)).limit(1)
        return self._session.execute(query).scalars().first()
