"""Repository abstractions for database interactions."""

from .contest_repository import ContestRepository
from .price_repository import PriceRepository

__all__ = [
    "ContestRepository",
    "PriceRepository",
]
