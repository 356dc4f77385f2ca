"""
Shared error handling for the login service.

Every failure of the authorization-code pipeline is terminal for the
current attempt. ``retryable`` only tells the caller whether restarting
the flow (fresh code) may succeed; nothing here retries on its own.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = {}


class LoginException(Exception):
    """Base exception for the login service."""

    retryable = False

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to a user-facing error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            details=self.details
        )


class ExchangeErrorKind(str, Enum):
    """Ways the authorization-code exchange can fail."""
    PROVIDER_REJECTED = "provider_rejected"
    UNREACHABLE = "unreachable"
    INVALID_REQUEST = "invalid_request"
    INVALID_RESPONSE = "invalid_response"


class ExchangeError(LoginException):
    """The token endpoint refused the code or could not be reached."""

    def __init__(
        self,
        kind: ExchangeErrorKind,
        message: str = "Token exchange failed",
        *,
        status: Optional[int] = None,
        body: Optional[str] = None,
        oauth_error: Optional[str] = None,
    ):
        self.kind = kind
        self.status = status
        # Raw provider body stays on the exception for operators; it is not
        # part of the response payload.
        self.body = body
        self.oauth_error = oauth_error
        details: Dict[str, Any] = {"kind": kind.value}
        if status is not None:
            details["status"] = status
        if oauth_error:
            details["oauth_error"] = oauth_error
        super().__init__("TOKEN_EXCHANGE_ERROR", message, details)

    @property
    def retryable(self) -> bool:
        return self.kind is ExchangeErrorKind.UNREACHABLE


class SigningKeyErrorKind(str, Enum):
    """Ways a signing key lookup can fail."""
    UNKNOWN_KEY = "unknown_key"
    FETCH_FAILED = "fetch_failed"


class SigningKeyError(LoginException):
    """A signing key could not be resolved from the JWKS endpoint."""

    def __init__(self, kind: SigningKeyErrorKind, message: str = "Signing key unavailable", *, key_id: Optional[str] = None):
        self.kind = kind
        self.key_id = key_id
        details: Dict[str, Any] = {"kind": kind.value}
        if key_id:
            details["kid"] = key_id
        super().__init__("SIGNING_KEY_ERROR", message, details)

    @property
    def retryable(self) -> bool:
        return self.kind is SigningKeyErrorKind.FETCH_FAILED


class ValidationErrorKind(str, Enum):
    """Reasons an identity token is rejected."""
    MALFORMED = "malformed"
    UNKNOWN_SIGNING_KEY = "unknown_signing_key"
    BAD_SIGNATURE = "bad_signature"
    INVALID_CLAIM = "invalid_claim"
    EXPIRED = "expired"
    ISSUED_IN_FUTURE = "issued_in_future"
    NOT_YET_VALID = "not_yet_valid"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"


class TokenValidationError(LoginException):
    """The identity token failed signature or claim validation."""

    def __init__(self, kind: ValidationErrorKind, message: str = "Identity token is invalid", *, claim: Optional[str] = None):
        self.kind = kind
        self.claim = claim
        details: Dict[str, Any] = {"kind": kind.value}
        if claim:
            details["claim"] = claim
        super().__init__("TOKEN_VALIDATION_ERROR", message, details)


class MissingIdentityTokenError(LoginException):
    """The token endpoint answered without an id_token."""

    def __init__(self, message: str = "Identity token is required"):
        super().__init__("MISSING_IDENTITY_TOKEN", message)


class AuthenticationFailed(LoginException):
    """Terminal failure of one authentication attempt.

    ``reason`` is the underlying pipeline error and ``state`` the last
    state the attempt reached before failing.
    """

    def __init__(self, reason: LoginException, state: Any):
        self.reason = reason
        self.state = state
        super().__init__(
            "AUTHENTICATION_FAILED",
            reason.message,
            {"reason": reason.code, **reason.details},
        )

    @property
    def retryable(self) -> bool:
        return self.reason.retryable
