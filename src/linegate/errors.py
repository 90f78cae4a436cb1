"""Gateway error taxonomy.

Verification and decode failures are turned into result values at their
boundary. Outbound failures are raised to the handler context that issued
the send, which must record them (never drop them).
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway errors."""

    pass


class ConfigurationError(GatewayError):
    """Raised at startup when required configuration is missing or invalid."""

    pass


class SignatureInvalid(GatewayError):
    """Webhook signature did not match the channel secret (HTTP 401)."""

    pass


class InvalidPayloadError(GatewayError):
    """Webhook body is not a JSON object with an events array (HTTP 400)."""

    pass


class DecodeError(GatewayError):
    """A single event in a batch could not be decoded.

    Attributes:
        index: Position of the event in the delivery's events array.
        reason: Short, PII-free description.
    """

    def __init__(self, index: int, reason: str) -> None:
        super().__init__(f"event[{index}]: {reason}")
        self.index = index
        self.reason = reason


class ContentTooLarge(DecodeError):
    """Inbound media exceeds its size or duration bound."""

    pass


class ValidationError(GatewayError):
    """An outbound message violates a structural bound. Raised before any send."""

    pass


class CredentialRefreshFailed(GatewayError):
    """Access token could not be refreshed after all attempts.

    Operational alarm: the channel secret likely needs rotation.
    """

    pass


class SendError(GatewayError):
    """Base class for outbound delivery failures."""

    pass


class PermanentSendError(SendError):
    """Provider rejected the call in a way retrying cannot fix (400, repeated 401)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReplyHandleExpired(PermanentSendError):
    """Reply handle used after its validity window."""

    pass


class ReplyHandleConsumed(PermanentSendError):
    """Reply handle already used for a previous send."""

    pass


class TransientSendError(SendError):
    """Retryable provider failure (network error, 5xx, provider 429)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RateLimited(SendError):
    """Local rate-limit permit not obtained within the allowed wait."""

    pass


class SendFailed(SendError):
    """All retry attempts exhausted on transient failures."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
