"""
Pydantic schemas for API request/response validation.
"""

from pydantic import BaseModel
from typing import Any, Optional, List, Dict


# ==================== Ingestion Schemas ====================

class SyncRequest(BaseModel):
    """On-demand sync request. tenantId is validated by the route."""
    tenantId: Optional[Any] = None


class SyncAccepted(BaseModel):
    """Returned as soon as the task is queued."""
    status: str = "accepted"
    tenantId: str


class TenantSyncStatus(BaseModel):
    """Outcome of one tenant's scheduled pass."""
    tenantId: int
    tenant: str
    status: str
    mode: Optional[str] = None
    counts: Optional[Dict[str, int]] = None
    error: Optional[str] = None


class ScheduledIngestResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    results: List[TenantSyncStatus] = []


# ==================== Generic Schemas ====================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    tenants: int
    customers: int
    products: int
    orders: int


class MessageResponse(BaseModel):
    message: str
