"""Expertise and credit domain errors."""

from __future__ import annotations


class ExpertiseError(Exception):
    """Base class for errors surfaced synchronously to API callers."""

    code = "ExpertiseError"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(ExpertiseError):
    code = "ValidationError"
    status_code = 400


class InsufficientBalanceError(ExpertiseError):
    """Raised before any debit or report row is written."""

    code = "InsufficientCredits"
    status_code = 400

    def __init__(self, required, available) -> None:
        super().__init__(f"Insufficient credits. Required: {required}, available: {available}.")
        self.required = required
        self.available = available


class ServiceUnavailableError(ExpertiseError):
    """Unknown or inactive service type."""

    code = "InvalidServiceType"
    status_code = 400


class NotFoundError(ExpertiseError):
    code = "NotFound"
    status_code = 404


class UnknownUserError(NotFoundError):
    code = "UnknownUser"


class ReportNotFoundError(NotFoundError):
    code = "ReportNotFound"


class ConcurrencyConflictError(ExpertiseError):
    """Internal signal: the account row changed between read and write."""

    code = "ConcurrencyConflict"
    status_code = 409


class TransientReserveError(ExpertiseError):
    code = "TransientError"
    status_code = 503


class ProviderError(RuntimeError):
    """Analysis provider failed. Converted into FAILED + refund, never returned to the caller."""


class ProviderTimeoutError(ProviderError):
    """Analysis provider did not answer within the configured timeout."""


class InvalidProviderResultError(ProviderError):
    """Analysis provider returned a malformed result."""
