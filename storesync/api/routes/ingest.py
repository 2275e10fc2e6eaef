"""
Ingestion trigger endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pika.exceptions import AMQPError

from ..deps import get_db, get_ingest_service, get_queue, require_cron_secret, require_sync_token
from ..schemas import ScheduledIngestResponse, SyncAccepted, SyncRequest
from ...core.database import Database
from ...core.errors import InvalidTenantId
from ...ingest.scheduler import run_scheduled_ingestion
from ...ingest.service import IngestService, parse_tenant_id
from ...queue.broker import QueueAdapter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"])


@router.get(
    "/cron/ingest",
    response_model=ScheduledIngestResponse,
    dependencies=[Depends(require_cron_secret)]
)
def scheduled_ingest(service: IngestService = Depends(get_ingest_service)):
    """
    Sync every active tenant now, one after another.
    Returns each tenant's outcome; one tenant failing does not stop the rest.
    """
    logger.info("Starting scheduled ingestion process...")
    results = run_scheduled_ingestion(service)

    if not results:
        return ScheduledIngestResponse(success=True, message="No active tenants found", results=[])

    return ScheduledIngestResponse(success=True, results=results)


@router.post(
    "/sync",
    response_model=SyncAccepted,
    status_code=202,
    dependencies=[Depends(require_sync_token)]
)
def request_sync(
    request: SyncRequest,
    db: Database = Depends(get_db),
    queue: QueueAdapter = Depends(get_queue)
):
    """
    Queue a sync for one tenant and return immediately.
    The outcome shows up later as an advanced watermark.
    """
    try:
        tenant_id = parse_tenant_id(request.tenantId)
    except InvalidTenantId as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not db.get_tenant(tenant_id):
        raise HTTPException(status_code=404, detail=f"Tenant {tenant_id} not found")

    try:
        queue.publish_ingestion_task(tenant_id)
    except AMQPError as e:
        logger.error(f"Failed to publish task for tenant {tenant_id}: {e}")
        raise HTTPException(status_code=503, detail="Queue unavailable")

    return SyncAccepted(tenantId=str(tenant_id))
