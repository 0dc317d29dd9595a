"""Validation of batched name/value rows before insertion."""

from __future__ import annotations

import csv
import io
import math
from collections.abc import Iterable, Sequence

from app.domain import AcceptedRow, BulkImportResult, PredictionBand, RejectedRow


def parse_csv_rows(text: str) -> list[list[str]]:
    """Split CSV text into raw rows, skipping blank lines."""

    reader = csv.reader(io.StringIO(text))
    return [row for row in reader if any(cell.strip() for cell in row)]


def _parse_value(raw_value: str) -> float | None:
    try:
        value = float(str(raw_value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def validate_rows(
    rows: Iterable[Sequence[str]],
    *,
    contest_id: int,
    close_price: float | None,
    band_ratio: float = 0.3,
) -> BulkImportResult:
    """Split ``rows`` into accepted and rejected entries.

    Rejected rows are skipped, never fatal. When ``close_price`` is unknown the
    band is not enforced and every numerically valid row is accepted.
    """

    band = PredictionBand.around(close_price, band_ratio) if close_price else None
    result = BulkImportResult(band=band)

    for line, row in enumerate(rows, start=1):
        cells = tuple(str(cell) for cell in row)
        if len(cells) < 2:
            result.rejected.append(RejectedRow(line=line, row=cells, reason="expected name and value"))
            continue

        name = cells[0].strip()
        if not name:
            result.rejected.append(RejectedRow(line=line, row=cells, reason="name is empty"))
            continue

        value = _parse_value(cells[1])
        if value is None:
            result.rejected.append(RejectedRow(line=line, row=cells, reason="value is not a number"))
            continue

        if band is not None and not band.contains(value):
            result.rejected.append(
                RejectedRow(
                    line=line,
                    row=cells,
                    reason=f"value outside accepted range ({band.describe()})",
                )
            )
            continue

        result.accepted.append(AcceptedRow(contest_id=contest_id, name=name, value=value))

    return result


__all__ = ["parse_csv_rows", "validate_rows"]
