"""
Login service package.

Turns the authorization code returned by the identity provider after a
browser login into an authenticated principal:

- app.exchange: authorization-code grant against the token endpoint.
- app.jwks: signing key cache with refresh on key rotation.
- app.validation: ID token signature and claim validation.
- app.authorities: provider role claims to normalized authorities.
- app.authenticator: the end-to-end pipeline.
- app.main: FastAPI entrypoint.

Design notes:
- Module import must not perform network calls.
- Browser redirects, sessions and logout belong to the surrounding
  application; this package only hands back the principal.
"""
