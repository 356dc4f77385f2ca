"""
Authority extraction package.

Role claims are provider specific; everything downstream of this package
only sees normalized authority strings.
"""

from .extractor import AuthorityExtractor, KeycloakAuthorityExtractor

__all__ = ["AuthorityExtractor", "KeycloakAuthorityExtractor"]
