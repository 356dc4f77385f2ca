"""
JWKS cache package.

Holds the identity provider's public signing keys used to verify ID
token signatures:

- One immutable key set per JWKS URI, replaced wholesale on refresh.
- Refresh happens on a key-id miss, so provider key rotation needs no
  out-of-band invalidation.
- Concurrent misses share a single in-flight fetch.
- Stale keys stay usable when a refresh fails.
"""

from .key_set_cache import KeySetCache

__all__ = ["KeySetCache"]
