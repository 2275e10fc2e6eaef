"""
Idempotent upserts from raw Shopify records into the local mirror.

Each entity has an insert field set and a (smaller) conflict update set.
Fields only in the insert set are written once and then frozen: customer
names, product descriptions, order prices. Aggregates and statuses are
refreshed on every sync.
"""

import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..core.config import get_config
from ..core.database import (
    Database,
    CUSTOMERS_TABLE,
    PRODUCTS_TABLE,
    ORDERS_TABLE,
    CHECKOUTS_TABLE,
    utc_now,
)

logger = logging.getLogger(__name__)

REDACTED_NAME = "Redacted"
REDACTED_EMAIL = "redacted@example.com"


@dataclass(frozen=True)
class EntityPolicy:
    """Which columns an upsert writes on insert and which it refreshes on conflict."""
    table: str
    insert_fields: Tuple[str, ...]
    conflict_fields: Tuple[str, ...]


ENTITY_POLICIES: Dict[str, EntityPolicy] = {
    'customer': EntityPolicy(
        table=CUSTOMERS_TABLE,
        insert_fields=('first_name', 'last_name', 'email', 'total_spent',
                       'orders_count', 'created_at', 'updated_at'),
        conflict_fields=('total_spent', 'orders_count', 'updated_at'),
    ),
    'product': EntityPolicy(
        table=PRODUCTS_TABLE,
        insert_fields=('title', 'body_html', 'vendor', 'product_type', 'status', 'created_at'),
        conflict_fields=('title', 'status'),
    ),
    'order': EntityPolicy(
        table=ORDERS_TABLE,
        insert_fields=('customer_id', 'total_price', 'currency', 'financial_status',
                       'fulfillment_status', 'created_at'),
        conflict_fields=('financial_status', 'fulfillment_status'),
    ),
    'checkout': EntityPolicy(
        table=CHECKOUTS_TABLE,
        insert_fields=('cart_token', 'email', 'total_price', 'currency', 'abandoned',
                       'created_at', 'updated_at'),
        conflict_fields=('email', 'total_price', 'abandoned', 'updated_at'),
    ),
}


def _parse_float(value: Any, default: float = 0.0) -> float:
    """Safely parse a money amount."""
    if value is None or value == '':
        return default
    try:
        if isinstance(value, str):
            value = re.sub(r'[^\d.\-]', '', value)
        return float(value)
    except (ValueError, TypeError):
        return default


def _parse_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def _dig(data: Optional[Dict[str, Any]], *keys: str) -> Any:
    """Nested get that tolerates missing or null intermediate objects."""
    value = data
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


# ==================== Record Mapping ====================

def customer_record(node: Dict[str, Any], redact_pii: bool) -> Dict[str, Any]:
    if redact_pii:
        first_name, last_name, email = REDACTED_NAME, REDACTED_NAME, REDACTED_EMAIL
    else:
        first_name = node.get('firstName') or REDACTED_NAME
        last_name = node.get('lastName') or REDACTED_NAME
        email = node.get('email') or REDACTED_EMAIL

    return {
        'first_name': first_name,
        'last_name': last_name,
        'email': email,
        'total_spent': _parse_float(_dig(node, 'amountSpent', 'amount')),
        'orders_count': _parse_int(node.get('numberOfOrders')),
        'created_at': node.get('createdAt'),
        'updated_at': utc_now(),
    }


def product_record(node: Dict[str, Any]) -> Dict[str, Any]:
    status = node.get('status')
    return {
        'title': node.get('title') or '',
        'body_html': node.get('bodyHtml'),
        'vendor': node.get('vendor'),
        'product_type': node.get('productType'),
        'status': status.lower() if isinstance(status, str) else status,
        'created_at': node.get('createdAt'),
    }


def order_record(node: Dict[str, Any], customer_id: Optional[int]) -> Dict[str, Any]:
    return {
        'customer_id': customer_id,
        'total_price': _parse_float(_dig(node, 'totalPriceSet', 'shopMoney', 'amount')),
        'currency': _dig(node, 'totalPriceSet', 'shopMoney', 'currencyCode'),
        'financial_status': node.get('displayFinancialStatus'),
        'fulfillment_status': node.get('displayFulfillmentStatus'),
        'created_at': node.get('createdAt'),
    }


def line_item_record(node: Dict[str, Any], product_id: Optional[int]) -> Dict[str, Any]:
    return {
        'product_id': product_id,
        'title': node.get('title'),
        'quantity': _parse_int(node.get('quantity'), default=1),
        'price': _parse_float(_dig(node, 'originalTotalSet', 'shopMoney', 'amount')),
    }


def checkout_record(payload: Dict[str, Any], redact_pii: bool) -> Dict[str, Any]:
    """Map a REST-style checkout webhook payload."""
    email = payload.get('email')
    if redact_pii and email:
        email = REDACTED_EMAIL
    return {
        'cart_token': payload.get('cart_token'),
        'email': email,
        'total_price': _parse_float(payload.get('total_price')),
        'currency': payload.get('currency'),
        'abandoned': 0,
        'created_at': payload.get('created_at'),
        'updated_at': utc_now(),
    }


class Reconciler:
    """Writes remote records into storage following ENTITY_POLICIES."""

    def __init__(self, db: Database, redact_pii: bool = True):
        self.db = db
        self.redact_pii = redact_pii

    @classmethod
    def from_config(cls, db: Database, config=None) -> "Reconciler":
        """Redaction comes from `ingest.redact_pii` so every entry point agrees."""
        config = config or get_config()
        return cls(db, redact_pii=config.get_bool('ingest', 'redact_pii', default=True))

    def _upsert(self, entity: str, tenant_id: int, shopify_id: str, record: Dict[str, Any]) -> int:
        policy = ENTITY_POLICIES[entity]
        values = {name: record.get(name) for name in policy.insert_fields}
        return self.db.upsert(policy.table, tenant_id, shopify_id, values, policy.conflict_fields)

    # ==================== Lookups ====================

    def resolve_customer_id(self, tenant_id: int, remote_id: Optional[str]) -> Optional[int]:
        """Local customer id for a remote id; None when unknown locally."""
        if not remote_id:
            return None
        return self.db.find_id(CUSTOMERS_TABLE, tenant_id, remote_id)

    def resolve_product_id(self, tenant_id: int, remote_id: Optional[str]) -> Optional[int]:
        if not remote_id:
            return None
        return self.db.find_id(PRODUCTS_TABLE, tenant_id, remote_id)

    # ==================== Entity Upserts ====================

    def upsert_customer(self, tenant_id: int, node: Dict[str, Any]) -> int:
        return self._upsert('customer', tenant_id, node['id'], customer_record(node, self.redact_pii))

    def upsert_product(self, tenant_id: int, node: Dict[str, Any]) -> int:
        return self._upsert('product', tenant_id, node['id'], product_record(node))

    def upsert_order(self, tenant_id: int, node: Dict[str, Any], customer_id: Optional[int]) -> int:
        return self._upsert('order', tenant_id, node['id'], order_record(node, customer_id))

    def upsert_checkout(self, tenant_id: int, payload: Dict[str, Any]) -> int:
        return self._upsert('checkout', tenant_id, str(payload['id']),
                            checkout_record(payload, self.redact_pii))

    def replace_order_items(
        self,
        tenant_id: int,
        order_id: int,
        line_item_nodes: List[Dict[str, Any]]
    ) -> int:
        """Delete all items of the order and insert the given set."""
        items = []
        for li in line_item_nodes:
            product_id = self.resolve_product_id(tenant_id, _dig(li, 'product', 'id'))
            items.append(line_item_record(li, product_id))
        return self.db.replace_order_items(order_id, items)
