from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import NoActiveContestError, PersistenceError, PredictionValidationError
from app.repositories import ContestRepository, PriceRepository
from app.services.contest_service import ContestService
from conftest import make_quote


@pytest.fixture
def service(db_session, market_state) -> ContestService:
    return ContestService(db_session, market_state, band_ratio=0.3, leaderboard_size=3)


@pytest.fixture
def contest(db_session):
    created = ContestRepository(db_session).create_contest("Week 1")
    db_session.commit()
    return created


def test_submit_prediction_inside_band(service, market_state, contest):
    market_state.apply_quote(make_quote(last_price=102.0, close_price=100.0))

    prediction = service.submit_prediction("  Asha ", "129.5")

    assert prediction.contest_id == contest.id
    assert prediction.name == "Asha"
    assert prediction.predicted_value == 129.5


def test_submit_prediction_outside_band(service, market_state, contest):
    market_state.apply_quote(make_quote(last_price=102.0, close_price=100.0))

    with pytest.raises(PredictionValidationError, match=r"within 30% of last close price \(70.00 - 130.00\)"):
        service.submit_prediction("Asha", 130.01)


def test_submit_prediction_without_close_is_rejected(service, contest):
    with pytest.raises(PredictionValidationError, match="Unable to verify prediction range"):
        service.submit_prediction("Asha", 100)


@pytest.mark.parametrize("name,value", [("", "100"), ("Asha", ""), ("Asha", None)])
def test_submit_prediction_requires_name_and_value(service, market_state, contest, name, value):
    market_state.apply_quote(make_quote(close_price=100.0))

    with pytest.raises(PredictionValidationError, match="Name and prediction value are required"):
        service.submit_prediction(name, value)


def test_submit_prediction_rejects_non_numeric(service, market_state, contest):
    market_state.apply_quote(make_quote(close_price=100.0))

    with pytest.raises(PredictionValidationError, match="must be a number"):
        service.submit_prediction("Asha", "lots")


def test_submit_prediction_needs_active_contest(service, market_state):
    market_state.apply_quote(make_quote(close_price=100.0))

    with pytest.raises(NoActiveContestError):
        service.submit_prediction("Asha", 101)


def test_band_is_checked_once_at_submission(service, market_state, db_session, contest):
    market_state.apply_quote(make_quote(last_price=100.0, close_price=100.0))
    accepted = service.submit_prediction("Asha", 125)

    market_state.apply_quote(make_quote(last_price=60.0, close_price=60.0))

    assert [item.id for item in ContestRepository(db_session).list_predictions(contest.id)] == [accepted.id]


def test_submit_prediction_surfaces_persistence_failure(service, market_state, contest):
    market_state.apply_quote(make_quote(close_price=100.0))

    with patch.object(
        ContestRepository,
        "add_prediction",
        side_effect=OperationalError("INSERT", {}, Exception("disk full")),
    ):
        with pytest.raises(PersistenceError, match="Error submitting prediction"):
            service.submit_prediction("Asha", 101)


def test_view_home_ranks_against_live_price(service, market_state, db_session, contest):
    repo = ContestRepository(db_session)
    for name, value in [("A", 90), ("B", 150), ("C", 95), ("D", 99)]:
        repo.add_prediction(contest.id, name, value)
    db_session.commit()
    market_state.apply_quote(make_quote(last_price=100.0, close_price=98.0))

    view = service.view_home()

    assert [item.name for item in view.top_predictions] == ["D", "C", "A"]
    assert view.current_price == 100.0
    assert view.last_close_price == 98.0
    assert view.message is None


def test_view_home_falls_back_to_latest_sample(service, db_session, contest):
    ContestRepository(db_session).add_prediction(contest.id, "A", 150)
    ContestRepository(db_session).add_prediction(contest.id, "B", 140)
    PriceRepository(db_session).record_sample(149.0)
    db_session.commit()

    view = service.view_home()

    assert [item.name for item in view.top_predictions] == ["A", "B"]
    assert view.current_price is None


def test_view_home_without_reference_price(service, db_session, contest):
    ContestRepository(db_session).add_prediction(contest.id, "A", 150)
    db_session.commit()

    view = service.view_home()

    assert view.top_predictions == []
    assert view.message.startswith("Waiting for the first live price")


def test_view_home_without_active_contest(service, market_state):
    market_state.apply_quote(make_quote(last_price=100.0))

    view = service.view_home()

    assert view.message == "No active contest"
    assert view.current_price == 100.0


def test_bulk_import_commits_valid_rows(service, market_state, db_session, contest):
    market_state.apply_quote(make_quote(close_price=100.0))

    result = service.bulk_import([["A", "101"], ["B", "abc"], ["", "102"], ["C", "200"]])

    assert result.accepted_count == 1
    assert result.rejected_count == 3
    stored = ContestRepository(db_session).list_predictions(contest.id)
    assert [(item.name, item.predicted_value) for item in stored] == [("A", 101.0)]


def test_bulk_import_needs_active_contest(service):
    with pytest.raises(NoActiveContestError):
        service.bulk_import([["A", "101"]])


def test_create_contest_and_delete_prediction(service, market_state, db_session):
    first = service.create_contest("Week 1")
    second = service.create_contest(None)

    assert service.get_active_contest().id == second.id
    assert second.name == "New Contest"
    assert [item.id for item in service.list_contests()] == [second.id, first.id]

    market_state.apply_quote(make_quote(close_price=100.0))
    prediction = service.submit_prediction("Asha", 101)
    assert [item.id for item in service.list_active_predictions()] == [prediction.id]

    assert service.delete_prediction(prediction.id) is True
    assert service.delete_prediction(prediction.id) is False


def test_bootstrap_seeds_and_repairs(service, db_session):
    service.bootstrap()
    seeded = service.get_active_contest()
    assert seeded.name == "Default Contest"

    seeded.is_active = False
    db_session.commit()
    service.bootstrap()

    assert service.get_active_contest().id == seeded.id
