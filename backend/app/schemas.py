from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Contest(BaseModel):
    id: int
    name: str
    created_at: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class Prediction(BaseModel):
    id: int
    contest_id: int
    name: str
    predicted_value: float
    submitted_at: datetime

    model_config = {"from_attributes": True}


class PredictionCreate(BaseModel):
    name: str = Field(default="", description="Participant display name")
    predicted_value: float | str | None = Field(
        default=None, description="Guessed index level at contest close"
    )

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()


class PredictionBandInfo(BaseModel):
    close_price: float
    low: float
    high: float


class PredictPage(BaseModel):
    last_close_price: float | None = None
    band: PredictionBandInfo | None = None


class SubmissionResult(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None
    prediction: Prediction | None = None


class HomeView(BaseModel):
    top_predictions: list[Prediction] = Field(default_factory=list)
    current_price: float | None = None
    last_close_price: float | None = None
    message: str | None = None


class TokenStatusView(BaseModel):
    is_token_valid: bool
    token_status: str
    token_error: str | None = None
    current_request_token: str | None = None


class AdminDashboard(BaseModel):
    contests: list[Contest] = Field(default_factory=list)
    active_contest: Contest | None = None
    predictions: list[Prediction] = Field(default_factory=list)
    current_price: float | None = None
    last_close_price: float | None = None
    last_fetched_at: datetime | None = None
    token: TokenStatusView


class AdminActionResult(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None
    is_token_valid: bool | None = None
    access_token: str | None = None
    details: dict[str, Any] | None = None


class AdminLogin(BaseModel):
    pin: str = ""


class AdminSessionToken(BaseModel):
    success: bool
    token: str | None = None
    error: str | None = None


class ContestCreate(BaseModel):
    name: str | None = None


class BulkImportRequest(BaseModel):
    rows: list[list[str]] | None = None
    csv_text: str | None = None

    @field_validator("rows", mode="before")
    @classmethod
    def _stringify_cells(cls, value: Any) -> Any:
        if value is None:
            return None
        return [[("" if cell is None else str(cell)) for cell in row] for row in value]


class RefreshTokenRequest(BaseModel):
    request_token: str | None = None


class AccessTokenUpdate(BaseModel):
    access_token: str = ""
