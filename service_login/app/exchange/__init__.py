"""
Token exchange package.

Performs the OAuth2 authorization-code grant against the identity
provider's token endpoint:

- Form-encoded POST with client credentials (post body or HTTP basic).
- Provider rejections and transport failures are reported separately so
  callers know whether restarting the browser flow can help.
- Tokens are only ever logged masked.
"""

from .token_exchanger import TokenExchanger

__all__ = ["TokenExchanger"]
