"""
JWKS cache with refresh-on-miss for identity provider signing keys.
"""

import asyncio
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import httpx
from jose import jwk
from jose.exceptions import JOSEError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from shared.errors import SigningKeyError, SigningKeyErrorKind
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from ..models import EMPTY_KEY_SET, KeySet, SigningKey

DEFAULT_ALGORITHMS = {
    "RSA": "RS256",
    "P-256": "ES256",
    "P-384": "ES384",
    "P-521": "ES512",
}


class KeySetCache:
    """Caches one key set per JWKS URI.

    Lookups read the current key set without locking. A miss triggers one
    refresh of the whole document; concurrent misses on the same URI share
    the in-flight fetch. A failed fetch leaves the cached set untouched.
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
        self.logger = get_logger("login.jwks")

        self._key_sets: Dict[str, KeySet] = {}
        self._inflight: Dict[str, "asyncio.Task[KeySet]"] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}

    def key_set(self, jwks_uri: str) -> KeySet:
        """Return the currently cached key set for ``jwks_uri``."""
        return self._key_sets.get(jwks_uri, EMPTY_KEY_SET)

    @property
    def cached_uris(self):
        return list(self._key_sets)

    async def get_key(self, key_id: str, jwks_uri: str, *, timeout: Optional[float] = None) -> SigningKey:
        """Resolve ``key_id`` against the JWKS at ``jwks_uri``."""
        key = self.key_set(jwks_uri).get(key_id)
        if key is not None:
            return key

        self.logger.info("Signing key not cached, refreshing JWKS", kid=key_id, jwks_uri=jwks_uri)
        key_set = await self.refresh(jwks_uri, timeout=timeout)

        key = key_set.get(key_id)
        if key is None:
            self.logger.warning("Signing key not found after refresh", kid=key_id, jwks_uri=jwks_uri)
            raise SigningKeyError(SigningKeyErrorKind.UNKNOWN_KEY, "Signing key not found", key_id=key_id)
        return key

    async def refresh(self, jwks_uri: str, *, timeout: Optional[float] = None) -> KeySet:
        """Fetch the JWKS document, joining a fetch already in flight."""
        task = self._inflight.get(jwks_uri)
        if task is None:
            task = asyncio.ensure_future(self._fetch_key_set(jwks_uri, timeout))
            self._inflight[jwks_uri] = task
            task.add_done_callback(lambda done: self._fetch_finished(jwks_uri, done))
        # A cancelled waiter must not cancel the fetch the others are awaiting
        return await asyncio.shield(task)

    def _fetch_finished(self, jwks_uri: str, task: "asyncio.Task[KeySet]") -> None:
        if self._inflight.get(jwks_uri) is task:
            del self._inflight[jwks_uri]
        if not task.cancelled():
            # Marks the exception retrieved when every waiter was cancelled
            task.exception()

    def seed(self, jwks_uri: str, document: Mapping[str, Any]) -> KeySet:
        """Install a key set from an already-fetched JWKS document."""
        key_set = self._parse_key_set(document)
        self._key_sets = {**self._key_sets, jwks_uri: key_set}
        return key_set

    def clear(self) -> None:
        """Drop every cached key set."""
        self._key_sets = {}
        self.logger.info("JWKS cache cleared")

    async def _fetch_key_set(self, jwks_uri: str, timeout: Optional[float]) -> KeySet:
        with self.metrics.time_operation("jwks_refresh_duration_seconds"):
            document = await self._fetch_document(jwks_uri, timeout)

        key_set = self._parse_key_set(document)
        # Single assignment: readers see either the old or the new set
        self._key_sets = {**self._key_sets, jwks_uri: key_set}

        self.metrics.increment_counter("jwks_refresh_total", status="success")
        self.logger.info("JWKS refreshed successfully", jwks_uri=jwks_uri, keys_count=len(key_set))
        return key_set

    async def _fetch_document(self, jwks_uri: str, timeout: Optional[float]) -> Mapping[str, Any]:
        try:
            response = await self._breaker_for(jwks_uri).call(
                self._client.get,
                jwks_uri,
                headers={"Accept": "application/json"},
                timeout=timeout if timeout is not None else self.timeout,
            )
            response.raise_for_status()
            document = response.json()
            if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
                raise ValueError("JWKS response missing 'keys' array")
        except CircuitBreakerOpenError:
            self.logger.warning("JWKS circuit open", jwks_uri=jwks_uri)
            self.metrics.increment_counter("jwks_refresh_total", status="error")
            raise SigningKeyError(SigningKeyErrorKind.FETCH_FAILED, "Signing keys are temporarily unavailable")
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("Failed to fetch JWKS", jwks_uri=jwks_uri, error=str(e))
            self.metrics.increment_counter("jwks_refresh_total", status="error")
            raise SigningKeyError(
                SigningKeyErrorKind.FETCH_FAILED, "Signing keys are temporarily unavailable"
            ) from e
        return document

    def _parse_key_set(self, document: Mapping[str, Any]) -> KeySet:
        keys: Dict[str, SigningKey] = {}
        for entry in document.get("keys") or []:
            if not isinstance(entry, dict):
                continue
            kid = entry.get("kid")
            if not isinstance(kid, str) or not kid:
                continue
            if entry.get("use", "sig") != "sig":
                continue

            algorithm = entry.get("alg") or self._default_algorithm(entry)
            if not isinstance(algorithm, str):
                self.logger.warning("Skipping JWK with unknown algorithm", kid=kid, kty=str(entry.get("kty")))
                continue

            try:
                key = jwk.construct(entry, algorithm=algorithm)
            except (JOSEError, ValueError, TypeError, KeyError) as e:
                self.logger.warning("Skipping unusable JWK", kid=kid, error=str(e))
                continue

            keys[kid] = SigningKey(key_id=kid, algorithm=algorithm, key=key, jwk=MappingProxyType(dict(entry)))
        return MappingProxyType(keys)

    @staticmethod
    def _default_algorithm(entry: Mapping[str, Any]) -> Optional[str]:
        curve, key_type = entry.get("crv"), entry.get("kty")
        hint = curve if isinstance(curve, str) else key_type
        return DEFAULT_ALGORITHMS.get(hint) if isinstance(hint, str) else None

    def _breaker_for(self, jwks_uri: str) -> CircuitBreaker:
        breaker = self._breakers.get(jwks_uri)
        if breaker is None:
            breaker = CircuitBreaker(f"jwks:{jwks_uri}", expected_exception=httpx.TransportError)
            self._breakers[jwks_uri] = breaker
        return breaker
