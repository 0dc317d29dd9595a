"""Contest read and write paths used by the public and admin API."""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain import BulkImportResult, PredictionBand
from app.errors import NoActiveContestError, NoReferencePriceError, PersistenceError, PredictionValidationError
from app.models import Contest, Prediction
from app.repositories import ContestRepository, PriceRepository
from app.schemas import Contest as ContestSchema
from app.schemas import HomeView
from app.schemas import Prediction as PredictionSchema
from app.schemas import PredictionBandInfo, PredictPage
from pricefeed.state import MarketState

from .bulk_import import validate_rows
from .ranking import top_n

NO_ACTIVE_CONTEST_MESSAGE = "No active contest"
NO_REFERENCE_MESSAGE = "Waiting for the first live price; the leaderboard will appear shortly"
MISSING_FIELDS_MESSAGE = "Name and prediction value are required"
RANGE_UNAVAILABLE_MESSAGE = "Unable to verify prediction range. Please try again later."


class ContestService:
    """Facade over contest persistence, ranking, and band validation."""

    def __init__(
        self,
        session: Session,
        state: MarketState,
        *,
        band_ratio: float = 0.3,
        leaderboard_size: int = 3,
    ) -> None:
        self._session = session
        self._state = state
        self._band_ratio = band_ratio
        self._leaderboard_size = leaderboard_size
        self._contest_repo = ContestRepository(session)
        self._price_repo = PriceRepository(session)

    @contextmanager
    def _transaction(self, failure_message: str) -> Iterator[None]:
        try:
            yield
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.exception(failure_message)
            raise PersistenceError(failure_message) from exc

    def _band(self) -> PredictionBand | None:
        close_price = self._state.snapshot().last_close_price
        if not close_price:
            return None
        return PredictionBand.around(close_price, self._band_ratio)

    def _reference_price(self) -> float | None:
        current = self._state.snapshot().current_price
        if current is not None:
            return current
        sample = self._price_repo.latest_sample()
        return sample.price if sample else None

    # ------------------------------------------------------------------
    # Public surface

    def view_home(self) -> HomeView:
        snapshot = self._state.snapshot()
        view = HomeView(
            current_price=snapshot.current_price,
            last_close_price=snapshot.last_close_price,
        )
        contest = self._contest_repo.get_active_contest()
        if contest is None:
            return view.model_copy(update={"message": NO_ACTIVE_CONTEST_MESSAGE})

        predictions = self._contest_repo.list_predictions(contest.id)
        try:
            ranked = top_n(predictions, self._reference_price(), self._leaderboard_size)
        except NoReferencePriceError:
            return view.model_copy(update={"message": NO_REFERENCE_MESSAGE})
        return view.model_copy(
            update={"top_predictions": [PredictionSchema.model_validate(item) for item in ranked]}
        )

    def predict_page(self) -> PredictPage:
        band = self._band()
        if band is None:
            return PredictPage(last_close_price=None)
        return PredictPage(
            last_close_price=band.close_price,
            band=PredictionBandInfo(close_price=band.close_price, low=band.low, high=band.high),
        )

    def submit_prediction(self, name: str | None, raw_value: Any) -> Prediction:
        display_name = (name or "").strip()
        if not display_name or raw_value is None or str(raw_value).strip() == "":
            raise PredictionValidationError(MISSING_FIELDS_MESSAGE)

        try:
            value = float(str(raw_value).strip())
        except ValueError as exc:
            raise PredictionValidationError("Prediction value must be a number") from exc
        if not math.isfinite(value):
            raise PredictionValidationError("Prediction value must be a number")

        band = self._band()
        if band is None:
            raise PredictionValidationError(RANGE_UNAVAILABLE_MESSAGE)
        if not band.contains(value):
            percent = round(self._band_ratio * 100)
            raise PredictionValidationError(
                f"Prediction must be within {percent}% of last close price ({band.describe()})"
            )

        contest = self._contest_repo.get_active_contest()
        if contest is None:
            raise NoActiveContestError(NO_ACTIVE_CONTEST_MESSAGE)

        with self._transaction("Error submitting prediction"):
            prediction = self._contest_repo.add_prediction(contest.id, display_name, value)
        logger.info("Prediction {} from {} in contest {}", value, display_name, contest.id)
        return prediction

    # ------------------------------------------------------------------
    # Admin surface

    def get_active_contest(self) -> Contest | None:
        return self._contest_repo.get_active_contest()

    def list_contests(self) -> list[ContestSchema]:
        return [ContestSchema.model_validate(item) for item in self._contest_repo.list_contests()]

    def list_active_predictions(self) -> list[PredictionSchema]:
        contest = self._contest_repo.get_active_contest()
        if contest is None:
            return []
        return [
            PredictionSchema.model_validate(item)
            for item in self._contest_repo.list_predictions(contest.id)
        ]

    def create_contest(self, name: str | None) -> Contest:
        with self._transaction("Error creating contest"):
            contest = self._contest_repo.create_contest(name)
        logger.info("Opened contest {} ({})", contest.id, contest.name)
        return contest

    def delete_prediction(self, prediction_id: int) -> bool:
        with self._transaction("Error deleting prediction"):
            deleted = self._contest_repo.delete_prediction(prediction_id)
        if deleted:
            logger.info("Deleted prediction {}", prediction_id)
        return deleted

    def bulk_import(self, rows: Sequence[Sequence[str]]) -> BulkImportResult:
        contest = self._contest_repo.get_active_contest()
        if contest is None:
            raise NoActiveContestError(NO_ACTIVE_CONTEST_MESSAGE)

        result = validate_rows(
            rows,
            contest_id=contest.id,
            close_price=self._state.snapshot().last_close_price,
            band_ratio=self._band_ratio,
        )
        if result.accepted:
            with self._transaction("Error importing predictions"):
                self._contest_repo.add_predictions(result.accepted)
        logger.info(
            "Bulk import into contest {}: {} accepted, {} rejected",
            contest.id,
            result.accepted_count,
            result.rejected_count,
        )
        return result

    def bootstrap(self) -> None:
        """Seed the default contest and close any zero-active-contest gap."""

        with self._transaction("Error preparing contests"):
            created = self._contest_repo.ensure_default_contest()
            repaired = None if created else self._contest_repo.repair_active_contest()
        if created:
            logger.info("Created default contest {}", created.id)
        if repaired:
            logger.warning("Restored contest {} as the single active contest", repaired.id)


__all__ = ["ContestService"]
