"""
Shared FastAPI dependencies: settings, storage, queue and auth checks.
"""

import hmac
import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from ..core.config import get_config
from ..core.database import Database, get_database
from ..ingest.reconciler import Reconciler
from ..ingest.service import IngestService
from ..queue.broker import QueueAdapter, get_queue_adapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiSettings:
    cron_secret: Optional[str] = None
    sync_token: Optional[str] = None
    webhook_secret: Optional[str] = None


def get_api_settings() -> ApiSettings:
    config = get_config()
    return ApiSettings(
        cron_secret=config.get('api', 'cron_secret'),
        sync_token=config.get('api', 'sync_token'),
        webhook_secret=config.get('api', 'webhook_secret'),
    )


def get_db() -> Database:
    return get_database()


def get_queue() -> QueueAdapter:
    try:
        return get_queue_adapter()
    except ValueError as e:
        logger.error(f"Queue not configured: {e}")
        raise HTTPException(status_code=503, detail="Queue not configured")


def get_ingest_service(db: Database = Depends(get_db)) -> IngestService:
    return IngestService.from_config(db=db)


def get_reconciler(db: Database = Depends(get_db)) -> Reconciler:
    return Reconciler.from_config(db)


def _bearer_matches(authorization: Optional[str], secret: str) -> bool:
    expected = f"Bearer {secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())


def require_cron_secret(
    authorization: Optional[str] = Header(default=None),
    settings: ApiSettings = Depends(get_api_settings)
) -> None:
    """Scheduler trigger auth. Rejects everything when no secret is configured."""
    if not settings.cron_secret or not _bearer_matches(authorization, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_sync_token(
    authorization: Optional[str] = Header(default=None),
    settings: ApiSettings = Depends(get_api_settings)
) -> None:
    """On-demand trigger auth. Open when no token is configured."""
    if settings.sync_token and not _bearer_matches(authorization, settings.sync_token):
        raise HTTPException(status_code=401, detail="Unauthorized")


def verify_webhook_hmac(raw_body: bytes, signature: str, secret: str) -> bool:
    """Check a base64 HMAC-SHA256 webhook signature."""
    digest = hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, signature or "")
