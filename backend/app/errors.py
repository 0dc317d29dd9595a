"""Error taxonomy shared by the price feed, contest services, and API."""

from __future__ import annotations


class NiftyGuessError(Exception):
    """Base class for errors surfaced to operators or participants."""


class ConfigError(NiftyGuessError):
    """Raised when broker credentials or a request token are missing."""


class BrokerError(NiftyGuessError):
    """Raised when a call to the brokerage API fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        upstream_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.upstream_message = upstream_message


class AuthError(BrokerError):
    """Raised when the broker rejects a token or a signed exchange."""


class TransportError(BrokerError):
    """Raised for network failures, timeouts, 5xx responses, and malformed payloads."""


class PredictionValidationError(NiftyGuessError):
    """Raised when a submitted prediction is malformed or outside the band."""


class NoReferencePriceError(NiftyGuessError):
    """Raised when ranking is requested before any price is known."""


class NoActiveContestError(NiftyGuessError):
    """Raised when an operation needs an active contest and none exists."""


class ContestNotFoundError(NiftyGuessError):
    """Raised when a prediction targets a contest that does not exist."""


class PersistenceError(NiftyGuessError):
    """Raised when a database insert or delete fails."""


class AdminAuthError(NiftyGuessError):
    """Raised when an admin PIN or session token is rejected."""


__all__ = [
    "AdminAuthError",
    "AuthError",
    "BrokerError",
    "ConfigError",
    "ContestNotFoundError",
    "NiftyGuessError",
    "NoActiveContestError",
    "NoReferencePriceError",
    "PersistenceError",
    "PredictionValidationError",
    "TransportError",
]
