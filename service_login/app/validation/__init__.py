"""
Identity token validation package.

Validates ID tokens returned by the identity provider's token endpoint:

- Signing keys come from the JWKS cache, selected by the header ``kid``.
- The signature is verified before any claim is trusted.
- Temporal claims, issuer and audience each fail with a distinct kind.
- Validated claims are exposed read-only through ``DecodedClaims``.
"""

from .claims import DecodedClaims
from .id_token_validator import IdentityTokenValidator

__all__ = ["DecodedClaims", "IdentityTokenValidator"]
