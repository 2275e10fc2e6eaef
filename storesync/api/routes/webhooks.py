"""
Shopify webhook endpoint.
Only checkout events are persisted; other topics are acknowledged and ignored.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from ..deps import ApiSettings, get_api_settings, get_db, get_reconciler, verify_webhook_hmac
from ..schemas import MessageResponse
from ...core.database import Database
from ...ingest.reconciler import Reconciler
from ...shopify.client import clean_domain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

CHECKOUT_TOPICS = ("checkouts/create", "checkouts/update")


def _find_tenant(db: Database, shop_domain: str) -> Optional[dict]:
    wanted = clean_domain(shop_domain)
    for tenant in db.get_tenants():
        if clean_domain(tenant['store_domain']) == wanted:
            return tenant
    return None


def _process_webhook(
    raw_body: bytes,
    topic: str,
    signature: str,
    shop_domain: str,
    db: Database,
    reconciler: Reconciler,
    settings: ApiSettings
) -> None:
    """Blocking part of the webhook: tenant lookup, signature check, storage."""
    tenant = _find_tenant(db, shop_domain)
    if not tenant:
        logger.error(f"Tenant not found for domain: {shop_domain}")
        raise HTTPException(status_code=404, detail="Tenant not found")

    if settings.webhook_secret:
        if not verify_webhook_hmac(raw_body, signature, settings.webhook_secret):
            logger.error("Invalid HMAC signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
    else:
        logger.warning("Skipping HMAC verification: webhook secret not set")

    try:
        data = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if topic in CHECKOUT_TOPICS:
        if not isinstance(data, dict) or data.get('id') is None:
            raise HTTPException(status_code=400, detail="Checkout payload has no id")
        reconciler.upsert_checkout(tenant['id'], data)
        logger.info(f"Checkout processed: {data['id']}")


@router.post("/shopify", response_model=MessageResponse)
async def shopify_webhook(
    request: Request,
    x_shopify_topic: str = Header(default=""),
    x_shopify_hmac_sha256: str = Header(default=""),
    x_shopify_shop_domain: str = Header(default=""),
    db: Database = Depends(get_db),
    reconciler: Reconciler = Depends(get_reconciler),
    settings: ApiSettings = Depends(get_api_settings)
):
    """Receive a webhook and upsert checkout events for the matching tenant."""
    raw_body = await request.body()
    logger.info(f"Webhook received: {x_shopify_topic} from {x_shopify_shop_domain}")

    await run_in_threadpool(
        _process_webhook,
        raw_body,
        x_shopify_topic,
        x_shopify_hmac_sha256,
        x_shopify_shop_domain,
        db,
        reconciler,
        settings
    )
    return MessageResponse(message="Webhook processed")
