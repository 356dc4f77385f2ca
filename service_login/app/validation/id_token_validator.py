"""
Identity token validation for the login flow.
"""

import binascii
import json
import time
from typing import Any, Callable, Dict, Optional

from jose import jws
from jose.exceptions import JOSEError
from jose.utils import base64url_decode

from shared.errors import (
    SigningKeyError,
    SigningKeyErrorKind,
    TokenValidationError,
    ValidationErrorKind,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from ..jwks.key_set_cache import KeySetCache
from ..models import ClientConfig
from .claims import DecodedClaims

DEFAULT_CLOCK_SKEW_SECONDS = 60


class IdentityTokenValidator:
    """Verifies signature, issuer, audience and lifetime of an ID token.

    The signature is checked before any claim is read. Claim checks run in
    a fixed order (exp, iat, nbf, iss, aud) and the first failure is
    returned; no claims are exposed for a token that fails any step.
    """

    def __init__(
        self,
        key_set_cache: KeySetCache,
        *,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
        verify_audience: bool = True,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.key_set_cache = key_set_cache
        self.clock_skew_seconds = clock_skew_seconds
        self.verify_audience = verify_audience
        self.clock = clock
        self.metrics = metrics or get_metrics_collector("login")
        self.logger = get_logger("login.validator")

    async def validate(
        self,
        id_token: str,
        client_config: ClientConfig,
        *,
        timeout: Optional[float] = None,
    ) -> DecodedClaims:
        """Validate ``id_token`` and return its claims."""
        try:
            claims = await self._validate(id_token, client_config, timeout)
        except TokenValidationError as e:
            self.logger.warning("Identity token rejected", kind=e.kind.value, claim=e.claim)
            self.metrics.increment_counter("token_validations_total", outcome=e.kind.value)
            raise
        except SigningKeyError as e:
            self.metrics.increment_counter("token_validations_total", outcome=e.kind.value)
            raise

        self.logger.info(
            "Identity token validated",
            sub=claims.get("sub"),
            exp=claims.get("exp"),
            iat=claims.get("iat"),
        )
        self.metrics.increment_counter("token_validations_total", outcome="valid")
        return DecodedClaims._from_validated(claims)

    async def _validate(self, id_token: str, client_config: ClientConfig, timeout: Optional[float]) -> Dict[str, Any]:
        # 1. Structure, without trusting anything yet
        if not isinstance(id_token, str) or id_token.count(".") != 2:
            raise TokenValidationError(ValidationErrorKind.MALFORMED, "Identity token is not a compact JWT")
        try:
            header = json.loads(base64url_decode(id_token.split(".", 1)[0].encode("ascii")))
        except (ValueError, TypeError, binascii.Error) as e:
            raise TokenValidationError(ValidationErrorKind.MALFORMED, "Identity token header is invalid") from e
        if not isinstance(header, dict):
            raise TokenValidationError(ValidationErrorKind.MALFORMED, "Identity token header is not an object")

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenValidationError(ValidationErrorKind.MALFORMED, "Identity token header missing key id (kid)")

        # 2. Signing key
        try:
            signing_key = await self.key_set_cache.get_key(kid, client_config.jwks_endpoint, timeout=timeout)
        except SigningKeyError as e:
            if e.kind is SigningKeyErrorKind.UNKNOWN_KEY:
                raise TokenValidationError(
                    ValidationErrorKind.UNKNOWN_SIGNING_KEY, "Identity token signed with an unknown key"
                ) from e
            raise

        # 3. Signature; the header alg must match the key's algorithm
        try:
            payload = jws.verify(id_token, signing_key.key, algorithms=[signing_key.algorithm])
        except JOSEError as e:
            raise TokenValidationError(
                ValidationErrorKind.BAD_SIGNATURE, "Identity token signature verification failed"
            ) from e

        try:
            claims = json.loads(payload)
        except ValueError as e:
            raise TokenValidationError(ValidationErrorKind.MALFORMED, "Identity token payload is not JSON") from e
        if not isinstance(claims, dict):
            raise TokenValidationError(ValidationErrorKind.MALFORMED, "Identity token payload is not an object")

        # 4. Claims
        self._check_claims(claims, client_config)
        return claims

    def _check_claims(self, claims: Dict[str, Any], client_config: ClientConfig) -> None:
        now = self.clock()

        exp = self._numeric_claim(claims, "exp", required=True)
        if not now < exp:
            raise TokenValidationError(ValidationErrorKind.EXPIRED, "Identity token has expired", claim="exp")

        iat = self._numeric_claim(claims, "iat", required=True)
        if iat > now + self.clock_skew_seconds:
            raise TokenValidationError(
                ValidationErrorKind.ISSUED_IN_FUTURE, "Identity token issued in the future", claim="iat"
            )

        nbf = self._numeric_claim(claims, "nbf", required=False)
        if nbf is not None and now < nbf:
            raise TokenValidationError(ValidationErrorKind.NOT_YET_VALID, "Identity token is not yet valid", claim="nbf")

        issuer = claims.get("iss")
        if not isinstance(issuer, str):
            raise TokenValidationError(ValidationErrorKind.INVALID_CLAIM, "Identity token missing issuer", claim="iss")
        if issuer != client_config.issuer:
            raise TokenValidationError(
                ValidationErrorKind.ISSUER_MISMATCH, "Identity token issued by an unexpected issuer", claim="iss"
            )

        if self.verify_audience:
            self._check_audience(claims, client_config.client_id)

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenValidationError(ValidationErrorKind.INVALID_CLAIM, "Identity token missing subject", claim="sub")

    @staticmethod
    def _numeric_claim(claims: Dict[str, Any], name: str, *, required: bool) -> Optional[float]:
        value = claims.get(name)
        if value is None and not required:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TokenValidationError(
                ValidationErrorKind.INVALID_CLAIM, f"Identity token claim '{name}' is missing or invalid", claim=name
            )
        return value

    @staticmethod
    def _check_audience(claims: Dict[str, Any], client_id: str) -> None:
        audience = claims.get("aud")
        if isinstance(audience, str):
            audiences = [audience]
        elif isinstance(audience, list):
            audiences = [item for item in audience if isinstance(item, str)]
        else:
            audiences = []

        if client_id not in audiences:
            raise TokenValidationError(
                ValidationErrorKind.AUDIENCE_MISMATCH, "Identity token not issued for this client", claim="aud"
            )

        # azp is mandatory with several audiences and must name this client
        authorized_party = claims.get("azp")
        if authorized_party is None and len(audiences) > 1 or authorized_party not in (None, client_id):
            raise TokenValidationError(
                ValidationErrorKind.AUDIENCE_MISMATCH, "Identity token authorized for another party", claim="azp"
            )
