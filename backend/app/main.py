from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response

from . import schemas
from .core.config import settings
from .db import SessionLocal, get_db, init_db
from .errors import AdminAuthError, NoActiveContestError, PersistenceError, PredictionValidationError
from .services.admin_service import AdminService, AdminSessions
from .services.bulk_import import parse_csv_rows
from .services.contest_service import ContestService
from pricefeed.service import PriceFeed, build_price_feed

app = FastAPI(title="NiftyGuess API", version="0.1.0", debug=settings.debug)
admin_sessions = AdminSessions(settings.admin_pin, ttl_seconds=settings.admin_session_ttl_seconds)


@app.on_event("startup")
async def on_startup() -> None:
    """Create tables, settle the active contest, and start the price feed."""

    init_db()
    feed = build_price_feed(settings)
    with SessionLocal() as session:
        ContestService(session, feed.state).bootstrap()
    app.state.price_feed = feed
    await feed.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    feed: PriceFeed | None = getattr(app.state, "price_feed", None)
    if feed is not None:
        await feed.stop()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _price_feed(request: Request) -> PriceFeed:
    """Return the feed built at startup."""

    feed = getattr(request.app.state, "price_feed", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Price feed not started")
    return feed


def _contest_service(db=Depends(get_db), feed: PriceFeed = Depends(_price_feed)) -> ContestService:
    """Provide the contest service wired with a SQLAlchemy session."""

    return ContestService(
        db,
        feed.state,
        band_ratio=settings.prediction_band_ratio,
        leaderboard_size=settings.leaderboard_size,
    )


def _admin_service(feed: PriceFeed = Depends(_price_feed)) -> AdminService:
    return AdminService(feed)


def _admin_sessions() -> AdminSessions:
    return admin_sessions


def _require_admin(
    x_admin_token: Annotated[str | None, Header()] = None,
    sessions: AdminSessions = Depends(_admin_sessions),
) -> str:
    """Reject admin requests without a session token issued by ``/admin/login``."""

    if not sessions.is_authenticated(x_admin_token):
        raise HTTPException(status_code=401, detail="Admin login required")
    return x_admin_token


# ----------------------------------------------------------------------
# Public surface


@app.get("/", response_model=schemas.HomeView, tags=["contest"])
def view_home(service: ContestService = Depends(_contest_service)):
    """Leaderboard of the predictions closest to the live price."""

    return service.view_home()


@app.get("/predict", response_model=schemas.PredictPage, tags=["contest"])
def predict_page(service: ContestService = Depends(_contest_service)):
    """Last close price and the accepted prediction range."""

    return service.predict_page()


@app.post("/predictions", response_model=schemas.SubmissionResult, tags=["contest"])
def submit_prediction(
    payload: schemas.PredictionCreate,
    service: ContestService = Depends(_contest_service),
):
    """Submit a guess into the active contest."""

    try:
        prediction = service.submit_prediction(payload.name, payload.predicted_value)
    except PredictionValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NoActiveContestError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return schemas.SubmissionResult(
        success=True,
        message="Prediction submitted successfully!",
        prediction=schemas.Prediction.model_validate(prediction),
    )


# ----------------------------------------------------------------------
# Admin surface


@app.post("/admin/login", response_model=schemas.AdminSessionToken, tags=["admin"])
def admin_login(
    payload: schemas.AdminLogin,
    response: Response,
    sessions: AdminSessions = Depends(_admin_sessions),
):
    try:
        token = sessions.login(payload.pin)
    except AdminAuthError as exc:
        response.status_code = 401
        return schemas.AdminSessionToken(success=False, error=str(exc))
    return schemas.AdminSessionToken(success=True, token=token)


@app.post("/admin/logout", response_model=schemas.AdminActionResult, tags=["admin"])
def admin_logout(
    token: str = Depends(_require_admin),
    sessions: AdminSessions = Depends(_admin_sessions),
):
    sessions.logout(token)
    return schemas.AdminActionResult(success=True, message="Logged out")


@app.get("/admin", response_model=schemas.AdminDashboard, tags=["admin"])
def admin_dashboard(
    _: str = Depends(_require_admin),
    service: ContestService = Depends(_contest_service),
    feed: PriceFeed = Depends(_price_feed),
):
    """Contests, active predictions, prices, and token health for operators."""

    snapshot = feed.state.snapshot()
    active = service.get_active_contest()
    return schemas.AdminDashboard(
        contests=service.list_contests(),
        active_contest=schemas.Contest.model_validate(active) if active else None,
        predictions=service.list_active_predictions(),
        current_price=snapshot.current_price,
        last_close_price=snapshot.last_close_price,
        last_fetched_at=snapshot.last_fetched_at,
        token=schemas.TokenStatusView(
            is_token_valid=snapshot.is_token_valid,
            token_status=snapshot.token_status.value,
            token_error=snapshot.last_error,
            current_request_token=snapshot.request_token,
        ),
    )


@app.post("/admin/contests", response_model=schemas.AdminActionResult, tags=["admin"])
def create_contest(
    payload: schemas.ContestCreate,
    response: Response,
    _: str = Depends(_require_admin),
    service: ContestService = Depends(_contest_service),
):
    try:
        contest = service.create_contest(payload.name)
    except PersistenceError as exc:
        response.status_code = 500
        return schemas.AdminActionResult(success=False, error=str(exc))
    return schemas.AdminActionResult(
        success=True,
        message=f"Contest '{contest.name}' is now active",
        details={"contest_id": contest.id},
    )


@app.delete("/admin/predictions/{prediction_id}", response_model=schemas.AdminActionResult, tags=["admin"])
def delete_prediction(
    prediction_id: int,
    response: Response,
    _: str = Depends(_require_admin),
    service: ContestService = Depends(_contest_service),
):
    try:
        deleted = service.delete_prediction(prediction_id)
    except PersistenceError as exc:
        response.status_code = 500
        return schemas.AdminActionResult(success=False, error=str(exc))
    if not deleted:
        response.status_code = 404
        return schemas.AdminActionResult(success=False, error="Prediction not found")
    return schemas.AdminActionResult(success=True, message="Prediction deleted")


@app.post("/admin/predictions/bulk", response_model=schemas.AdminActionResult, tags=["admin"])
def bulk_import(
    payload: schemas.BulkImportRequest,
    response: Response,
    _: str = Depends(_require_admin),
    service: ContestService = Depends(_contest_service),
):
    """Import name/value rows given as a JSON array or raw CSV text."""

    rows: list[list[str]] = list(payload.rows or [])
    if payload.csv_text:
        rows.extend(parse_csv_rows(payload.csv_text))
    try:
        result = service.bulk_import(rows)
    except NoActiveContestError as exc:
        response.status_code = 409
        return schemas.AdminActionResult(success=False, error=str(exc))
    except PersistenceError as exc:
        response.status_code = 500
        return schemas.AdminActionResult(success=False, error=str(exc))
    return schemas.AdminActionResult(
        success=True,
        message=f"Imported {result.accepted_count} predictions, skipped {result.rejected_count}",
        details={
            "accepted": result.accepted_count,
            "rejected": [
                {"line": row.line, "row": list(row.row), "reason": row.reason}
                for row in result.rejected
            ],
        },
    )


@app.post("/admin/token/refresh", response_model=schemas.AdminActionResult, tags=["admin"])
async def refresh_token(
    payload: schemas.RefreshTokenRequest,
    _: str = Depends(_require_admin),
    service: AdminService = Depends(_admin_service),
):
    """Exchange a request token (or the last known one) for an access token."""

    return await service.refresh_token(payload.request_token)


@app.post("/admin/token/access", response_model=schemas.AdminActionResult, tags=["admin"])
async def update_access_token(
    payload: schemas.AccessTokenUpdate,
    _: str = Depends(_require_admin),
    service: AdminService = Depends(_admin_service),
):
    """Install an access token without broker verification."""

    return await service.set_access_token(payload.access_token)


@app.post("/admin/fetch", response_model=schemas.AdminActionResult, tags=["admin"])
async def trigger_fetch(
    _: str = Depends(_require_admin),
    service: AdminService = Depends(_admin_service),
):
    return await service.trigger_fetch()
