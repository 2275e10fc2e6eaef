"""Shared fixtures: temp database, tenants and a scripted Shopify fake."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from storesync.core.database import Database
from storesync.core.errors import Unavailable
from storesync.ingest.reconciler import Reconciler
from storesync.ingest.service import IngestService
from storesync.shopify.queries import QUERIES


def page(entity: str, nodes: List[Dict[str, Any]], has_next: bool = False,
         cursor: Optional[str] = None) -> Dict[str, Any]:
    """Build a GraphQL `data` object for one page; dotted entities nest."""
    data: Dict[str, Any] = {
        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
        "edges": [{"node": n} for n in nodes],
    }
    for key in reversed(entity.split(".")):
        data = {key: data}
    return data


def customer_node(n: int, spent: str = "10.00", orders: int = 1, **overrides) -> Dict[str, Any]:
    node = {
        "id": f"gid://shopify/Customer/{n}",
        "firstName": f"First{n}",
        "lastName": f"Last{n}",
        "email": f"customer{n}@example.com",
        "amountSpent": {"amount": spent},
        "numberOfOrders": orders,
        "createdAt": "2024-01-01T00:00:00Z",
    }
    node.update(overrides)
    return node


def product_node(n: int, title: str = None, status: str = "ACTIVE", **overrides) -> Dict[str, Any]:
    node = {
        "id": f"gid://shopify/Product/{n}",
        "title": title or f"Product {n}",
        "bodyHtml": "<p>desc</p>",
        "vendor": "Acme",
        "productType": "Widget",
        "status": status,
        "createdAt": "2024-01-02T00:00:00Z",
    }
    node.update(overrides)
    return node


def line_item_node(title: str, quantity: int = 1, amount: str = "5.00",
                   product_n: Optional[int] = None) -> Dict[str, Any]:
    return {
        "title": title,
        "quantity": quantity,
        "originalTotalSet": {"shopMoney": {"amount": amount}},
        "product": {"id": f"gid://shopify/Product/{product_n}"} if product_n is not None else None,
    }


def order_node(n: int, customer_n: Optional[int] = None, line_items=None,
               amount: str = "25.00", financial: str = "PAID",
               fulfillment: str = "UNFULFILLED", more_items_cursor: Optional[str] = None,
               more_items: bool = False) -> Dict[str, Any]:
    node = {
        "id": f"gid://shopify/Order/{n}",
        "totalPriceSet": {"shopMoney": {"amount": amount, "currencyCode": "USD"}},
        "displayFinancialStatus": financial,
        "displayFulfillmentStatus": fulfillment,
        "createdAt": "2024-01-03T00:00:00Z",
        "customer": {"id": f"gid://shopify/Customer/{customer_n}"} if customer_n is not None else None,
    }
    if line_items is not None:
        node["lineItems"] = page("lineItems", line_items, more_items, more_items_cursor)["lineItems"]
    return node


class FakeShopify:
    """Stands in for ShopifyClient: serves scripted pages per entity and records calls."""

    def __init__(self, pages: Dict[str, List[Dict[str, Any]]] = None,
                 fail_entity: Optional[str] = None, fail_domains=()):
        self.pages = {k: list(v) for k, v in (pages or {}).items()}
        self.fail_entity = fail_entity
        self.fail_domains = set(fail_domains)
        self.calls: List[tuple] = []

    def call(self, domain, credential, query, variables=None):
        entity = next(name for name, q in QUERIES.items() if q == query)
        self.calls.append((entity, dict(variables or {}), domain))

        if entity == self.fail_entity or domain in self.fail_domains:
            raise Unavailable(f"{entity} unavailable")

        served = sum(1 for e, _, d in self.calls if e == entity and d == domain) - 1
        entity_pages = self.pages.get(entity, [])
        if served < len(entity_pages):
            return entity_pages[served]
        return page(entity, [])

    def entities(self) -> List[str]:
        return [entity for entity, _, _ in self.calls]


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "test.db")


@pytest.fixture
def tenant_id(db):
    return db.add_tenant("Test Store", "test-store.myshopify.com", "shpat_test")


@pytest.fixture
def make_service(db):
    def _make(fake: FakeShopify, redact_pii: bool = False) -> IngestService:
        return IngestService(db, fake, Reconciler(db, redact_pii=redact_pii))
    return _make
