"""
Shared utilities for the login service.

- config: Settings via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Login error taxonomy and error responses
- circuit_breaker: Fail-fast protection for identity provider calls
- base_service: FastAPI service scaffolding
- test_helpers: Keys, JWKS documents and signed tokens for tests

Do not import from service packages into shared/.
"""
