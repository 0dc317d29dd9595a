from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace

from app.schemas import BulkImportRequest, Prediction, PredictionCreate


def test_prediction_create_strips_name():
    """Verify that names are trimmed and missing names become empty strings."""
    assert PredictionCreate(name="  Asha  ", predicted_value="22100").name == "Asha"
    assert PredictionCreate(name=None).name == ""


def test_prediction_create_keeps_raw_value():
    """Verify that the value is passed through for the service to parse."""
    payload = PredictionCreate(name="Asha", predicted_value="abc")
    assert payload.predicted_value == "abc"
    assert PredictionCreate(name="Asha", predicted_value=22100.5).predicted_value == 22100.5


def test_bulk_import_request_stringifies_cells():
    """Verify that numeric and null cells are coerced to strings."""
    request = BulkImportRequest(rows=[["Asha", 22100], ["Ravi", None]])
    assert request.rows == [["Asha", "22100"], ["Ravi", ""]]
    assert BulkImportRequest().rows is None


def test_prediction_reads_orm_attributes():
    """Verify that ORM-style objects validate into the response schema."""
    record = SimpleNamespace(
        id=1,
        contest_id=2,
        name="Asha",
        predicted_value=22100.0,
        submitted_at=datetime(2024, 5, 2, 9, 30),
    )
    prediction = Prediction.model_validate(record)
    assert prediction.contest_id == 2
    assert prediction.predicted_value == 22100.0
