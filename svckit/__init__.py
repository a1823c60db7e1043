"""
Shared infrastructure clients for services.

This package aggregates thin, uniform wrappers consumed by all services:

- cache: Redis client with pooled connections, typed commands and reply decoding
- database: PostgreSQL client with named parameters and transactions
- httpclient: HTTP request builder over httpx
- logging: Structured logging with request-scoped context
- config: Client configuration via pydantic-settings
- errors: Canonical error types and responses
- metrics: Prometheus metrics helpers

Nothing in here may import from a consuming service.
"""

__version__ = "1.0.0"
