"""Error taxonomy for feedback authorization issuance and settlement."""

from typing import Optional


class FeedbackAuthError(Exception):
    """Base class; every failure carries a human-readable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(FeedbackAuthError):
    """Required settings are absent or inconsistent. Never retried."""


class ValidationError(FeedbackAuthError):
    """Caller input violates a precondition. Never retried."""


class ResolutionError(FeedbackAuthError):
    """An agent name could not be mapped to an identity or endpoint."""


class UpstreamError(FeedbackAuthError):
    """A remote call returned a non-success status or no response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamTimeout(UpstreamError):
    """A remote call did not answer within its bound."""


class ProtocolError(FeedbackAuthError):
    """A well-formed response is missing the expected fields."""


class OnChainRejection(FeedbackAuthError):
    """The registry rejected the transaction. Terminal: do not resubmit."""

    def __init__(self, message: str, transaction_ref: Optional[str] = None) -> None:
        super().__init__(message)
        self.transaction_ref = transaction_ref


def http_status(exc: Exception) -> int:
    """Status code an HTTP binding answers with for a failure."""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, ResolutionError):
        return 404
    if isinstance(exc, OnChainRejection):
        return 409
    if isinstance(exc, UpstreamTimeout):
        return 504
    if isinstance(exc, (UpstreamError, ProtocolError)):
        return 502
    return 500
