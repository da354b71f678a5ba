"""
Shared error handling for the M2M Trust Layer.

Two families live here. Authorization-path errors are raised inside the
decision engine and always collapse to a Deny; they are never shown to the
requester. Rotation-path errors propagate to the external scheduler, which
owns retry and backoff.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class TrustLayerError(Exception):
    """Base exception for Trust Layer services."""

    http_status = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


# ── Authorization path ─────────────────────────────────────────────


class AuthorizationFailure(TrustLayerError):
    """Anything that makes the engine answer Deny."""

    @property
    def reason(self) -> str:
        return self.code


class TokenErrorReason(str, Enum):
    """Why a bearer token was rejected. Operator-visible only."""

    MALFORMED_TOKEN = "MalformedToken"
    ALGORITHM_NOT_ALLOWED = "AlgorithmNotAllowed"
    SIGNATURE_INVALID = "SignatureInvalid"
    ISSUER_MISMATCH = "IssuerMismatch"
    TOKEN_EXPIRED = "TokenExpired"
    TOKEN_NOT_YET_VALID = "TokenNotYetValid"
    WRONG_TOKEN_USE = "WrongTokenUse"
    INVALID_AUDIENCE = "InvalidAudience"
    INVALID_VERSION = "InvalidVersion"


class InvalidTokenError(AuthorizationFailure):
    """A token failed one of the validation gates."""

    def __init__(self, reason: TokenErrorReason, message: str = "Invalid token",
                 details: Optional[Dict[str, Any]] = None):
        self.token_reason = reason
        super().__init__(reason.value, message, details)


class KeyFetchError(AuthorizationFailure):
    """Signing key could not be obtained from the provider key set."""

    def __init__(self, message: str = "Signing key unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("KeyFetchError", message, details)


class RateLimitedError(AuthorizationFailure):
    """Key-set fetch ceiling reached and the bounded wait elapsed."""

    def __init__(self, message: str = "Key fetch rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RateLimitedError", message, details)


class InvalidRequestContext(AuthorizationFailure):
    """The inbound method ARN could not be parsed."""

    def __init__(self, message: str = "Malformed request context", details: Optional[Dict[str, Any]] = None):
        super().__init__("InvalidRequestContext", message, details)


# ── Rotation path ──────────────────────────────────────────────────


class ProviderCallError(TrustLayerError):
    """The credential-issuing provider rejected or failed a call."""

    http_status = 502

    def __init__(self, operation: str, message: str = "Provider call failed",
                 details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("PROVIDER_CALL_ERROR", f"{operation}: {message}", details)


class TriggerRegistrationError(TrustLayerError):
    """A scheduled trigger could not be created or removed."""

    http_status = 502

    def __init__(self, message: str = "Trigger registration failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRIGGER_REGISTRATION_ERROR", message, details)


class TriggerNotFoundError(TriggerRegistrationError):
    """The trigger facility has no rule with the given id."""

    http_status = 404

    def __init__(self, rule_id: str):
        super().__init__(f"Trigger '{rule_id}' not found", details={"rule_id": rule_id})
        self.code = "TRIGGER_NOT_FOUND"
        self.rule_id = rule_id


class NotificationError(TrustLayerError):
    """The notifier could not deliver a message."""

    http_status = 502

    def __init__(self, message: str = "Notification delivery failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOTIFICATION_ERROR", message, details)
