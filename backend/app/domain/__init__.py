"""Domain models for quotes, prediction bands, and bulk imports."""

from .models import AcceptedRow, BulkImportResult, PredictionBand, Quote, RejectedRow

__all__ = [
    "AcceptedRow",
    "BulkImportResult",
    "PredictionBand",
    "Quote",
    "RejectedRow",
]
