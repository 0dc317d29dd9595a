"""Contest and prediction data access helpers."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.orm import Session

from app.domain import AcceptedRow
from app.errors import ContestNotFoundError
from app.models import DEFAULT_CONTEST_NAME, NEW_CONTEST_NAME, Contest, Prediction


class ContestRepository:
    """Encapsulate contest lifecycle and prediction persistence.

    The repository never commits. Callers own the transaction, which is what
    makes :meth:`create_contest` atomic: the deactivation and the insert land in
    the same commit or not at all.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Contests

    def get_active_contest(self) -> Contest | None:
        query = (
            select(Contest)
            .where(Contest.is_active.is_(True))
            .order_by(desc(Contest.created_at), desc(Contest.id))
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def get_contest(self, contest_id: int) -> Contest | None:
        return self._session.get(Contest, contest_id)

    def create_contest(self, name: str | None) -> Contest:
        contest_name = (name or "").strip() or NEW_CONTEST_NAME
        self._session.execute(
            update(Contest).where(Contest.is_active.is_(True)).values(is_active=False)
        )
        contest = Contest(name=contest_name, is_active=True)
        self._session.add(contest)
        self._session.flush()
        return contest

    def list_contests(self) -> list[Contest]:
        query = select(Contest).order_by(desc(Contest.created_at), desc(Contest.id))
        return list(self._session.execute(query).scalars().all())

    def ensure_default_contest(self) -> Contest | None:
        total = self._session.execute(select(func.count(Contest.id))).scalar_one()
        if total:
            return None
        contest = Contest(name=DEFAULT_CONTEST_NAME, is_active=True)
        self._session.add(contest)
        self._session.flush()
        return contest

    def repair_active_contest(self) -> Contest | None:
        """Reactivate the newest contest when none is active.

        Returns the reactivated contest, or ``None`` when nothing needed fixing.
        """

        active_count = self._session.execute(
            select(func.count(Contest.id)).where(Contest.is_active.is_(True))
        ).scalar_one()
        if active_count == 1:
            return None
        if active_count > 1:
            newest = self.get_active_contest()
            self._session.execute(
                update(Contest)
                .where(Contest.is_active.is_(True), Contest.id != newest.id)
                .values(is_active=False)
            )
            return newest

        newest = self._session.execute(
            select(Contest).order_by(desc(Contest.created_at), desc(Contest.id)).limit(1)
        ).scalars().first()
        if newest is None:
            return None
        newest.is_active = True
        self._session.flush()
        return newest

    # ------------------------------------------------------------------
    # Predictions

    def add_prediction(self, contest_id: int, name: str, value: float) -> Prediction:
        if self._session.get(Contest, contest_id) is None:
            raise ContestNotFoundError(f"Contest {contest_id} does not exist")
        prediction = Prediction(contest_id=contest_id, name=name, predicted_value=value)
        self._session.add(prediction)
        self._session.flush()
        return prediction

    def add_predictions(self, rows: Iterable[AcceptedRow]) -> list[Prediction]:
        known_contests: set[int] = set()
        created: list[Prediction] = []
        for row in rows:
            if row.contest_id not in known_contests:
                if self._session.get(Contest, row.contest_id) is None:
                    raise ContestNotFoundError(f"Contest {row.contest_id} does not exist")
                known_contests.add(row.contest_id)
            prediction = Prediction(
                contest_id=row.contest_id, name=row.name, predicted_value=row.value
            )
            self._session.add(prediction)
            created.append(prediction)
        if created:
            self._session.flush()
        return created

    def delete_prediction(self, prediction_id: int) -> bool:
        result = self._session.execute(delete(Prediction).where(Prediction.id == prediction_id))
        return bool(result.rowcount)

    def get_prediction(self, prediction_id: int) -> Prediction | None:
        return self._session.get(Prediction, prediction_id)

    def list_predictions(self, contest_id: int) -> list[Prediction]:
        query = (
            select(Prediction)
            .where(Prediction.contest_id == contest_id)
            .order_by(desc(Prediction.submitted_at), desc(Prediction.id))
        )
        return list(self._session.execute(query).scalars().all())
