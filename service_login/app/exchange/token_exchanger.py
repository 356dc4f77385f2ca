"""
Authorization code exchange against the identity provider token endpoint.
"""

from typing import Any, Dict, Mapping, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from shared.errors import ExchangeError, ExchangeErrorKind
from shared.logging import get_logger, mask_token
from shared.metrics import MetricsCollector, get_metrics_collector
from ..models import ClientConfig, TokenSet

RESERVED_PARAMS = frozenset({"grant_type", "code", "redirect_uri", "client_id", "client_secret"})


class TokenExchanger:
    """Exchanges a single-use authorization code for a token set.

    A rejected code is never resubmitted: the provider has already burnt
    it. Transport failures surface as ``UNREACHABLE`` and the caller may
    restart the flow with a fresh code.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = 10.0,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self.metrics = metrics or get_metrics_collector("login")
        self.logger = get_logger("login.exchange")
        self._breakers: Dict[str, CircuitBreaker] = {}

    def _breaker_for(self, token_endpoint: str) -> CircuitBreaker:
        breaker = self._breakers.get(token_endpoint)
        if breaker is None:
            breaker = CircuitBreaker(
                f"token-endpoint:{token_endpoint}",
                expected_exception=httpx.TransportError,
            )
            self._breakers[token_endpoint] = breaker
        return breaker

    async def exchange(
        self,
        code: str,
        redirect_uri: str,
        client_config: ClientConfig,
        *,
        extra_params: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> TokenSet:
        """Exchange ``code`` for tokens, raising ``ExchangeError`` on failure."""
        if not code:
            raise ExchangeError(ExchangeErrorKind.INVALID_REQUEST, "Authorization code is required")
        if not redirect_uri:
            raise ExchangeError(ExchangeErrorKind.INVALID_REQUEST, "Redirect URI is required")

        form, auth = self._build_request(code, redirect_uri, client_config, extra_params)

        self.logger.info(
            "Exchanging authorization code",
            client_id=client_config.client_id,
            token_endpoint=client_config.token_endpoint,
            redirect_uri=redirect_uri,
        )

        try:
            response = await self._breaker_for(client_config.token_endpoint).call(
                self._client.post,
                client_config.token_endpoint,
                data=form,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=timeout if timeout is not None else self.timeout,
            )
        except CircuitBreakerOpenError:
            self.logger.warning("Token endpoint circuit open", token_endpoint=client_config.token_endpoint)
            self._record("unreachable")
            raise ExchangeError(ExchangeErrorKind.UNREACHABLE, "Identity provider is temporarily unavailable")
        except httpx.DecodingError as e:
            self.logger.error(
                "Token endpoint response could not be decoded",
                token_endpoint=client_config.token_endpoint,
                error_type=type(e).__name__,
            )
            self._record("invalid_response")
            raise ExchangeError(
                ExchangeErrorKind.INVALID_RESPONSE, "Token endpoint returned an undecodable response"
            ) from e
        except httpx.RequestError as e:
            self.logger.error(
                "Token endpoint unreachable",
                token_endpoint=client_config.token_endpoint,
                error_type=type(e).__name__,
            )
            self._record("unreachable")
            raise ExchangeError(
                ExchangeErrorKind.UNREACHABLE, "Identity provider is temporarily unavailable"
            ) from e

        if response.status_code != 200:
            oauth_error = self._oauth_error(response)
            self.logger.warning(
                "Token endpoint rejected authorization code",
                status_code=response.status_code,
                oauth_error=oauth_error,
            )
            self._record("rejected")
            raise ExchangeError(
                ExchangeErrorKind.PROVIDER_REJECTED,
                "Identity provider rejected the authorization code",
                status=response.status_code,
                body=response.text,
                oauth_error=oauth_error,
            )

        token_set = self._parse_token_response(response)
        self.logger.info(
            "Token exchange successful",
            access_token=mask_token(token_set.access_token),
            id_token=mask_token(token_set.id_token),
            refresh_token=mask_token(token_set.refresh_token),
            expires_in=token_set.expires_in,
            token_type=token_set.token_type,
            scope=sorted(token_set.scope),
        )
        self._record("success")
        return token_set

    def _build_request(
        self,
        code: str,
        redirect_uri: str,
        client_config: ClientConfig,
        extra_params: Optional[Mapping[str, str]],
    ):
        form: Dict[str, str] = {}
        # Extra parameters go first so the protocol parameters always win
        for key, value in (extra_params or {}).items():
            if key in RESERVED_PARAMS:
                self.logger.warning("Ignoring reserved token request parameter", param=key)
                continue
            form[key] = value

        form.update({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

        auth = None
        if client_config.token_endpoint_auth_method == "client_secret_basic":
            auth = httpx.BasicAuth(client_config.client_id, client_config.client_secret)
        else:
            form["client_id"] = client_config.client_id
            form["client_secret"] = client_config.client_secret
        return form, auth

    def _parse_token_response(self, response: httpx.Response) -> TokenSet:
        try:
            payload = response.json()
        except ValueError as e:
            self._record("invalid_response")
            raise ExchangeError(
                ExchangeErrorKind.INVALID_RESPONSE, "Token endpoint returned a non-JSON response"
            ) from e

        if not isinstance(payload, dict):
            self._record("invalid_response")
            raise ExchangeError(ExchangeErrorKind.INVALID_RESPONSE, "Token endpoint returned an unexpected payload")

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            self._record("invalid_response")
            raise ExchangeError(ExchangeErrorKind.INVALID_RESPONSE, "Token endpoint response is missing access_token")

        id_token = payload.get("id_token")
        refresh_token = payload.get("refresh_token")
        scope = payload.get("scope")

        return TokenSet(
            access_token=access_token,
            token_type=str(payload.get("token_type") or "Bearer"),
            id_token=id_token if isinstance(id_token, str) and id_token else None,
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expires_in=self._coerce_expires_in(payload.get("expires_in")),
            scope=frozenset(scope.split()) if isinstance(scope, str) else frozenset(),
        )

    @staticmethod
    def _coerce_expires_in(value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return None
        return None

    @staticmethod
    def _oauth_error(response: httpx.Response) -> Optional[str]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict) and isinstance(payload.get("error"), str):
            return payload["error"]
        return None

    def _record(self, outcome: str) -> None:
        self.metrics.increment_counter("token_exchanges_total", outcome=outcome)
