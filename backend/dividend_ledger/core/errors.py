"""Error taxonomy shared by the ledger services and the API layer."""

from __future__ import annotations


class DomainError(RuntimeError):
    """Base class for errors surfaced to callers with a stable ``kind``."""

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Raised for malformed dates, non-positive amounts or out-of-range rates."""

    kind = "validation_error"
    status_code = 422


class NotFoundError(DomainError):
    """Raised when a symbol, dividend or prediction key does not exist."""

    kind = "not_found"
    status_code = 404


class ConflictError(DomainError):
    """Raised when the requested change conflicts with stored state."""

    kind = "conflict"
    status_code = 409


class ProviderError(DomainError):
    """Raised when the market data provider fails or returns a bad payload."""

    kind = "provider_error"
    status_code = 502


class ProviderRateLimitError(ProviderError):
    """Raised when the market data provider rejects a call for rate limiting."""

    kind = "provider_rate_limited"
    status_code = 429


class DataIntegrityWarning(UserWarning):
    """Category used when logging reconstructed data that had to be clamped."""


__all__ = [
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ProviderError",
    "ProviderRateLimitError",
    "DataIntegrityWarning",
]
