import argparse
from pathlib import Path

from loguru import logger

from app import crud
from app.core.config import get_settings
from app.db import init_db, session_scope
from app.services.bulk_import import parse_csv_rows, validate_rows


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bulk import predictions into the active contest")
    parser.add_argument("csv_path", type=Path, help="CSV file with name,value rows")
    parser.add_argument(
        "--close-price",
        type=float,
        default=None,
        help="Last close used to enforce the prediction band (no band when omitted)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Validate without writing")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_db()

    rows = parse_csv_rows(args.csv_path.read_text(encoding="utf-8"))
    if args.close_price is None:
        logger.warning("No --close-price given; rows are imported without a band check")

    with session_scope() as session:
        contest = crud.get_active_contest(session)
        if contest is None:
            logger.error("No active contest")
            raise SystemExit(1)
        contest_id = contest.id

        result = validate_rows(
            rows,
            contest_id=contest_id,
            close_price=args.close_price,
            band_ratio=settings.prediction_band_ratio,
        )
        for rejected in result.rejected:
            logger.warning("Skipping line {} {}: {}", rejected.line, list(rejected.row), rejected.reason)
        if not args.dry_run:
            crud.add_predictions(session, result.accepted)

    logger.info(
        "{} {} predictions into contest {} ({} skipped)",
        "Validated" if args.dry_run else "Imported",
        result.accepted_count,
        contest_id,
        result.rejected_count,
    )


if __name__ == "__main__":
    main()
