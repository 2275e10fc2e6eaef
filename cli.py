"""
CLI for StoreSync.
Run ingestion passes, the queue worker, the scheduler, or the API server.
"""

import sys
import json
import argparse
from pathlib import Path

# Add project to path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def _init(role="cli"):
    from storesync.core.config import get_config
    from storesync.core.logging import setup_logging_from_config

    config = get_config()
    setup_logging_from_config(config, role=role)
    return config


def cmd_ingest(args):
    """Run one direct sync pass for a tenant."""
    from storesync.core.errors import IngestError
    from storesync.ingest.service import IngestService

    config = _init()
    service = IngestService.from_config(config)

    print(f"[INGEST] Syncing tenant {args.tenant}...")
    try:
        result = service.ingest_for_tenant(args.tenant)
    except IngestError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    print(f"\n[OK] {result.mode.capitalize()} sync complete for {result.store_domain}")
    print(f"   Customers: {result.customers}")
    print(f"   Products: {result.products}")
    print(f"   Orders: {result.orders} ({result.line_items} line items)")


def cmd_ingest_all(args):
    """Sync every active tenant directly."""
    from storesync.ingest.service import IngestService
    from storesync.ingest.scheduler import run_scheduled_ingestion

    config = _init()
    results = run_scheduled_ingestion(IngestService.from_config(config))
    print(json.dumps(results, indent=2))
    if any(r['status'] == 'failed' for r in results):
        sys.exit(1)


def cmd_enqueue(args):
    """Publish one ingestion task to the queue."""
    from storesync.core.errors import IngestError
    from storesync.ingest.service import IngestService
    from storesync.queue.broker import QueueAdapter

    config = _init()
    try:
        tenant = IngestService.from_config(config).load_tenant(args.tenant)
    except IngestError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    queue = QueueAdapter.from_config(config)
    try:
        queue.publish_ingestion_task(tenant['id'])
    finally:
        queue.close()
    print(f"[OK] Task queued for tenant {tenant['id']} ({tenant['store_domain']})")


def cmd_worker(args):
    """Run the queue worker until interrupted."""
    from storesync.queue.worker import IngestionWorker

    config = _init("worker")
    worker = IngestionWorker.from_config(config)
    worker.run()


def cmd_schedule(args):
    """Run the periodic fan-out in-process."""
    from storesync.ingest.service import IngestService
    from storesync.ingest.scheduler import IngestScheduler

    config = _init("scheduler")
    scheduler = IngestScheduler(IngestService.from_config(config), interval_minutes=args.interval)
    try:
        scheduler.run()
    except KeyboardInterrupt:
        scheduler.stop()


def cmd_serve(args):
    """Start the API server."""
    import uvicorn

    print(f"[SERVER] Starting API server on http://{args.host}:{args.port}")
    print(f"   Docs: http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "storesync.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload
    )


def cmd_tenants_list(args):
    """Print all tenants without credentials."""
    from storesync.core.database import get_database

    _init()
    for tenant in get_database().get_tenants():
        state = "active" if tenant['is_active'] else "inactive"
        print(
            f"{tenant['id']:>4}  {tenant['store_domain']:<40} {state:<9} "
            f"last synced: {tenant['last_synced_at'] or 'never'}"
        )


def cmd_tenants_reset_sync(args):
    """Clear a tenant's watermark so the next pass is a full sync."""
    from storesync.core.database import get_database

    _init()
    if get_database().reset_last_synced(args.tenant):
        print(f"[OK] Reset lastSyncedAt for tenant {args.tenant}. Next sync will be a FULL sync.")
    else:
        print(f"[ERROR] Tenant {args.tenant} not found")
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="StoreSync CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py ingest --tenant 3
  python cli.py enqueue --tenant 3
  python cli.py worker
  python cli.py serve
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    ingest_parser = subparsers.add_parser("ingest", help="Run one sync pass for a tenant")
    ingest_parser.add_argument("--tenant", type=str, required=True, help="Tenant ID")

    subparsers.add_parser("ingest-all", help="Sync every active tenant now")

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a sync task for a tenant")
    enqueue_parser.add_argument("--tenant", type=str, required=True, help="Tenant ID")

    subparsers.add_parser("worker", help="Run the queue worker")

    schedule_parser = subparsers.add_parser("schedule", help="Run periodic ingestion of all tenants")
    schedule_parser.add_argument("--interval", type=int, default=None, help="Minutes between runs")

    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    tenants_parser = subparsers.add_parser("tenants", help="Tenant maintenance")
    tenants_subparsers = tenants_parser.add_subparsers(dest="tenants_command")
    tenants_subparsers.add_parser("list", help="List tenants")
    reset_parser = tenants_subparsers.add_parser("reset-sync", help="Force a full sync next time")
    reset_parser.add_argument("--tenant", type=int, required=True, help="Tenant ID")

    args = parser.parse_args()

    if args.command == "ingest":
        cmd_ingest(args)
    elif args.command == "ingest-all":
        cmd_ingest_all(args)
    elif args.command == "enqueue":
        cmd_enqueue(args)
    elif args.command == "worker":
        cmd_worker(args)
    elif args.command == "schedule":
        cmd_schedule(args)
    elif args.command == "serve":
        cmd_serve(args)
    elif args.command == "tenants":
        if args.tenants_command == "list":
            cmd_tenants_list(args)
        elif args.tenants_command == "reset-sync":
            cmd_tenants_reset_sync(args)
        else:
            tenants_parser.print_help()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
