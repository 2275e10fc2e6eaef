"""
Ingest Service.
Runs one sync pass for a tenant: customers -> products -> orders (with line items),
then advances the tenant's watermark.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from ..core.database import Database, get_database, utc_now
from ..core.config import get_config
from ..core.errors import InvalidTenantId, TenantNotFound
from ..shopify.client import ShopifyClient
from ..shopify.pager import CursorPager, parse_page
from ..shopify.queries import (
    GET_CUSTOMERS_QUERY,
    GET_PRODUCTS_QUERY,
    GET_ORDERS_QUERY,
    GET_ORDER_LINE_ITEMS_QUERY,
    LINE_ITEMS_ENTITY,
    LINE_ITEMS_PAGE_SIZE,
    updated_since_filter,
)
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZES = {
    'customers': 100,
    'products': 100,
    'orders': 50,
}
MIN_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class SyncWindow:
    """What a pass asks for. Computed once per pass from the tenant's watermark."""
    updated_since: Optional[str] = None

    @classmethod
    def for_tenant(cls, tenant: Dict[str, Any]) -> "SyncWindow":
        return cls(updated_since=tenant.get('last_synced_at') or None)

    @property
    def is_incremental(self) -> bool:
        return self.updated_since is not None

    @property
    def mode(self) -> str:
        return "incremental" if self.is_incremental else "full"

    @property
    def query_filter(self) -> Optional[str]:
        if self.updated_since is None:
            return None
        return updated_since_filter(self.updated_since)


@dataclass
class SyncResult:
    """Outcome of one completed tenant pass."""
    tenant_id: int
    store_domain: str
    mode: str
    customers: int = 0
    products: int = 0
    orders: int = 0
    line_items: int = 0
    started_at: str = field(default_factory=utc_now)
    finished_at: Optional[str] = None

    @property
    def counts(self) -> Dict[str, int]:
        return {
            'customers': self.customers,
            'products': self.products,
            'orders': self.orders,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_tenant_id(tenant_id: Any) -> int:
    """Accept ints and integer-like strings; reject everything else."""
    if isinstance(tenant_id, bool):
        raise InvalidTenantId(tenant_id)
    if isinstance(tenant_id, int):
        return tenant_id
    if isinstance(tenant_id, str):
        try:
            return int(tenant_id.strip())
        except ValueError:
            pass
    raise InvalidTenantId(tenant_id)


class IngestService:
    """Drives the pager and reconciler for one tenant at a time."""

    def __init__(
        self,
        db: Database,
        client: ShopifyClient,
        reconciler: Reconciler,
        page_sizes: Optional[Dict[str, int]] = None,
        clock: Callable[[], str] = utc_now
    ):
        self.db = db
        self.client = client
        self.reconciler = reconciler
        self.page_sizes = dict(DEFAULT_PAGE_SIZES)
        self.page_sizes.update(page_sizes or {})
        for entity, size in self.page_sizes.items():
            if not MIN_PAGE_SIZE <= size <= MAX_PAGE_SIZE:
                raise ValueError(
                    f"Page size for {entity} must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}"
                )
        self._clock = clock

    @classmethod
    def from_config(cls, config=None, db: Optional[Database] = None) -> "IngestService":
        """Build the service from config.yaml."""
        config = config or get_config()
        db = db or get_database()
        page_sizes = config.get('shopify', 'page_sizes', default={}) or {}
        return cls(
            db=db,
            client=ShopifyClient.from_config(config),
            reconciler=Reconciler.from_config(db, config),
            page_sizes={k: int(v) for k, v in page_sizes.items()}
        )

    # ==================== Entry Points ====================

    def ingest_for_tenant(self, tenant_id: Any) -> SyncResult:
        """
        Validate and load a tenant, then run one pass.

        Raises:
            InvalidTenantId: id is not integer-like
            TenantNotFound: no tenant with that id
        """
        tenant = self.load_tenant(tenant_id)
        return self.run_pass(tenant)

    def load_tenant(self, tenant_id: Any) -> Dict[str, Any]:
        id_ = parse_tenant_id(tenant_id)
        tenant = self.db.get_tenant(id_)
        if not tenant:
            raise TenantNotFound(id_)
        return tenant

    def run_pass(self, tenant: Dict[str, Any]) -> SyncResult:
        """
        Sync customers, products and orders in that order, then advance
        the watermark. Any exception aborts the pass before the watermark moves.
        """
        window = SyncWindow.for_tenant(tenant)
        result = SyncResult(
            tenant_id=tenant['id'],
            store_domain=tenant['store_domain'],
            mode=window.mode,
            started_at=self._clock()
        )

        logger.info(
            f"=== SYNC STARTED FOR TENANT: {tenant['store_name']} ({tenant['store_domain']}) ==="
        )
        if window.is_incremental:
            logger.info(f"Incremental sync: fetching items updated after {window.updated_since}")
        else:
            logger.info("Full sync: fetching all items")

        result.customers = self.sync_customers(tenant, window)
        result.products = self.sync_products(tenant, window)
        result.orders, result.line_items = self.sync_orders(tenant, window)

        result.finished_at = self._clock()
        self.db.update_last_synced(tenant['id'], result.finished_at)

        logger.info(
            f"Sync completed for {tenant['store_name']}: {result.customers} customers, "
            f"{result.products} products, {result.orders} orders, {result.line_items} line items"
        )
        return result

    # ==================== Entity Steps ====================

    def _pager(self, tenant: Dict[str, Any], window: SyncWindow, query: str, entity: str) -> CursorPager:
        return CursorPager(
            client=self.client,
            domain=tenant['store_domain'],
            credential=tenant['access_token'],
            query=query,
            entity=entity,
            page_size=self.page_sizes[entity],
            query_filter=window.query_filter
        )

    def sync_customers(self, tenant: Dict[str, Any], window: SyncWindow) -> int:
        count = 0
        for page in self._pager(tenant, window, GET_CUSTOMERS_QUERY, 'customers'):
            for node in page.nodes:
                self.reconciler.upsert_customer(tenant['id'], node)
            count += len(page.nodes)
        logger.info(f"Synced {count} customers")
        return count

    def sync_products(self, tenant: Dict[str, Any], window: SyncWindow) -> int:
        count = 0
        for page in self._pager(tenant, window, GET_PRODUCTS_QUERY, 'products'):
            for node in page.nodes:
                self.reconciler.upsert_product(tenant['id'], node)
            count += len(page.nodes)
        logger.info(f"Synced {count} products")
        return count

    def sync_orders(self, tenant: Dict[str, Any], window: SyncWindow) -> tuple:
        """Returns (orders, line_items) counts."""
        order_count = 0
        item_count = 0

        for page in self._pager(tenant, window, GET_ORDERS_QUERY, 'orders'):
            for node in page.nodes:
                item_count += self._sync_order(tenant, node)
            order_count += len(page.nodes)

        logger.info(f"Synced {order_count} orders ({item_count} line items)")
        return order_count, item_count

    def _sync_order(self, tenant: Dict[str, Any], node: Dict[str, Any]) -> int:
        tenant_id = tenant['id']
        customer_remote_id = (node.get('customer') or {}).get('id')
        customer_id = self.reconciler.resolve_customer_id(tenant_id, customer_remote_id)
        if customer_remote_id and customer_id is None:
            logger.debug(f"Order {node['id']}: customer {customer_remote_id} not found locally")

        logger.debug(
            f"Processing order {node['id']} | created {node.get('createdAt')} "
            f"| financial {node.get('displayFinancialStatus')}"
        )
        order_id = self.reconciler.upsert_order(tenant_id, node, customer_id)

        # No edges at all means the order's items were not requested; keep what is stored
        if (node.get('lineItems') or {}).get('edges') is None:
            return 0

        first_page = parse_page(node, 'lineItems')
        line_items = list(first_page.nodes)
        if first_page.has_next_page:
            line_items.extend(self._remaining_line_items(tenant, node['id'], first_page.end_cursor))
        return self.reconciler.replace_order_items(tenant_id, order_id, line_items)

    def _remaining_line_items(self, tenant: Dict[str, Any], order_remote_id: str,
                              cursor: Optional[str]) -> List[Dict[str, Any]]:
        """Fetch the line items past the first page embedded in the order."""
        if not cursor:
            logger.warning(
                f"Order {order_remote_id}: more than {LINE_ITEMS_PAGE_SIZE} line items "
                f"but no cursor to page on, storing the first {LINE_ITEMS_PAGE_SIZE} only"
            )
            return []

        pager = CursorPager(
            client=self.client,
            domain=tenant['store_domain'],
            credential=tenant['access_token'],
            query=GET_ORDER_LINE_ITEMS_QUERY,
            entity=LINE_ITEMS_ENTITY,
            page_size=LINE_ITEMS_PAGE_SIZE,
            searchable=False,
            extra_variables={'id': order_remote_id}
        )
        items = [item for page in pager.pages(start_cursor=cursor) for item in page.nodes]
        logger.info(f"Order {order_remote_id}: fetched {len(items)} more line items")
        return items
