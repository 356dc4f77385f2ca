"""
End-to-end authorization code login.
"""

import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Mapping, Optional

from shared.errors import AuthenticationFailed, LoginException, MissingIdentityTokenError
from shared.logging import get_logger, set_subject
from shared.metrics import MetricsCollector, get_metrics_collector
from .authorities import AuthorityExtractor, KeycloakAuthorityExtractor
from .exchange import TokenExchanger
from .models import AuthenticatedPrincipal, ClientConfig, TokenSet
from .validation import DecodedClaims, IdentityTokenValidator


class AuthenticationState(str, Enum):
    """Steps of one authentication attempt, in order."""
    START = "start"
    CODE_RECEIVED = "code_received"
    EXCHANGED = "exchanged"
    VALIDATED = "validated"
    AUTHORITIES_EXTRACTED = "authorities_extracted"
    AUTHENTICATED = "authenticated"


class AuthenticationOrchestrator:
    """Turns an authorization code into an ``AuthenticatedPrincipal``.

    Each call to ``authenticate`` is an independent, strictly sequential run:
    exchange, validate, extract, assemble. Any failure ends the attempt with
    ``AuthenticationFailed``; nothing is retried. The only state shared
    between calls is the validator's key cache.
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        validator: IdentityTokenValidator,
        extractor: Optional[AuthorityExtractor] = None,
        client_config: Optional[ClientConfig] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.exchanger = exchanger
        self.validator = validator
        self.extractor = extractor or KeycloakAuthorityExtractor()
        self.client_config = client_config
        self.metrics = metrics or get_metrics_collector("login")
        self.logger = get_logger("login.authenticator")

    async def authenticate(
        self,
        code: str,
        redirect_uri: Optional[str] = None,
        client_config: Optional[ClientConfig] = None,
        *,
        extra_params: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> AuthenticatedPrincipal:
        """Run the login pipeline for one authorization code.

        ``redirect_uri`` must be the value sent in the authorization request;
        it defaults to the client's registered redirect URI. ``timeout``
        bounds each network call of this attempt.
        """
        config = client_config or self.client_config
        if config is None:
            raise ValueError("A client configuration is required")
        redirect_uri = redirect_uri or config.redirect_uri

        state = AuthenticationState.START
        started = time.time()
        try:
            state = self._transition(state, AuthenticationState.CODE_RECEIVED)
            token_set = await self.exchanger.exchange(
                code, redirect_uri, config, extra_params=extra_params, timeout=timeout
            )
            state = self._transition(state, AuthenticationState.EXCHANGED)

            if token_set.id_token is None:
                raise MissingIdentityTokenError()
            claims = await self.validator.validate(token_set.id_token, config, timeout=timeout)
            state = self._transition(state, AuthenticationState.VALIDATED)

            authorities = self.extractor.extract(claims)
            state = self._transition(state, AuthenticationState.AUTHORITIES_EXTRACTED)

            principal = self._build_principal(token_set, claims, authorities, started)
            state = self._transition(state, AuthenticationState.AUTHENTICATED)
        except LoginException as e:
            self.logger.warning(
                "Authentication failed",
                state=state.value,
                reason=e.code,
                kind=e.details.get("kind"),
                retryable=e.retryable,
            )
            self.metrics.increment_counter("authentications_total", outcome="failed")
            raise AuthenticationFailed(e, state) from e

        set_subject(principal.subject)
        self.logger.info(
            "Authentication successful",
            username=principal.preferred_username,
            authorities=sorted(principal.authorities),
        )
        self.metrics.increment_counter("authentications_total", outcome="authenticated")
        return principal

    def _transition(self, current: AuthenticationState, target: AuthenticationState) -> AuthenticationState:
        self.logger.debug("Authentication state transition", from_state=current.value, to_state=target.value)
        return target

    @staticmethod
    def _build_principal(token_set: TokenSet, claims: DecodedClaims, authorities, started: float) -> AuthenticatedPrincipal:
        expiry = None
        if token_set.expires_in is not None:
            expiry = datetime.fromtimestamp(started, tz=timezone.utc) + timedelta(seconds=token_set.expires_in)

        return AuthenticatedPrincipal(
            subject=claims.get_string("sub"),
            preferred_username=claims.get_string("preferred_username"),
            email=claims.get_string("email"),
            name=claims.get_string("name"),
            authorities=frozenset(authorities),
            raw_id_token=token_set.id_token,
            access_token=token_set.access_token,
            refresh_token=token_set.refresh_token,
            expiry=expiry,
            scope=token_set.scope,
            claims=claims,
        )
