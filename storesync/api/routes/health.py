"""
Health check endpoint.
"""

from fastapi import APIRouter, Depends

from ..deps import get_db
from ..schemas import HealthResponse
from ...core.database import (
    Database,
    TENANTS_TABLE,
    CUSTOMERS_TABLE,
    PRODUCTS_TABLE,
    ORDERS_TABLE,
)
from ...core.config import APP_VERSION

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(db: Database = Depends(get_db)):
    """Check API health and database status."""
    return HealthResponse(
        status="healthy",
        version=APP_VERSION,
        tenants=db.count(TENANTS_TABLE),
        customers=db.count(CUSTOMERS_TABLE),
        products=db.count(PRODUCTS_TABLE),
        orders=db.count(ORDERS_TABLE)
    )
