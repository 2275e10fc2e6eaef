"""
FastAPI application for StoreSync.
"""

from fastapi import FastAPI

from storesync.core.config import get_config, APP_VERSION
from storesync.core.logging import setup_logging_from_config
from storesync.core.database import get_database
from storesync.api.routes import health, ingest, webhooks

# Initialize logging
config = get_config()
setup_logging_from_config(config, role="api")

# Initialize database
get_database()

app = FastAPI(
    title="StoreSync API",
    description="Multi-tenant store data ingestion triggers",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.include_router(health.router, prefix="/api")
app.include_router(ingest.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "StoreSync API",
        "version": APP_VERSION,
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storesync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
