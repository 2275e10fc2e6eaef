"""
Exception hierarchy for the ingestion pipeline.
"""

from typing import Any, List, Optional


class IngestError(Exception):
    """Base class for all StoreSync errors."""


class ShopifyError(IngestError):
    """Failure talking to the store platform API."""


class RateLimited(ShopifyError):
    """HTTP 429 from the platform. Retried inside the client."""

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        message = "Rate limited"
        if retry_after is not None:
            message += f" (retry after {retry_after}s)"
        super().__init__(message)


class Unavailable(ShopifyError):
    """Retry budget exhausted without a usable response."""


class RequestRejected(ShopifyError):
    """Non-retryable HTTP status from the platform."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        super().__init__(f"Shopify API error: {reason} ({status_code})")


class GraphQLError(ShopifyError):
    """GraphQL response carried errors and no data."""

    def __init__(self, errors: List[Any]):
        self.errors = errors
        super().__init__(f"Shopify GraphQL error: {errors}")


class InvalidTenantId(IngestError):
    """Tenant id is not integer-like."""

    def __init__(self, tenant_id: Any):
        self.tenant_id = tenant_id
        super().__init__(f"Invalid tenant ID: {tenant_id!r}. Must be a number.")


class TenantNotFound(IngestError):
    def __init__(self, tenant_id: Any):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} not found")


class PersistenceError(IngestError):
    """Storage failure. Aborts the current tenant pass only."""
