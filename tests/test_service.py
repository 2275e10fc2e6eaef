"""Tests for the per-tenant sync pass."""

import logging
import threading

import pytest

from storesync.core.database import CUSTOMERS_TABLE, ORDER_ITEMS_TABLE, ORDERS_TABLE, PRODUCTS_TABLE
from storesync.core.errors import InvalidTenantId, TenantNotFound, Unavailable
from storesync.ingest.reconciler import Reconciler
from storesync.ingest.service import IngestService, SyncWindow, parse_tenant_id
from storesync.shopify.queries import LINE_ITEMS_ENTITY, updated_since_filter

from conftest import FakeShopify, customer_node, line_item_node, order_node, page, product_node

WATERMARK = "2024-05-01T12:00:00+00:00"


def _catalog():
    """Two customer pages, one product page, one order page."""
    return {
        "customers": [
            page("customers", [customer_node(1), customer_node(2)], has_next=True, cursor="c-1"),
            page("customers", [customer_node(3)]),
        ],
        "products": [page("products", [product_node(1), product_node(2)])],
        "orders": [page("orders", [
            order_node(1, customer_n=1, line_items=[
                line_item_node("Mug", 2, "10.00", product_n=1),
                line_item_node("Tee", 1, "15.00", product_n=2),
            ]),
            order_node(2, customer_n=99, line_items=[line_item_node("Mug", 1, "5.00", product_n=1)]),
        ])],
    }


class TestParseTenantId:
    def test_accepts_integer_like(self):
        assert parse_tenant_id(7) == 7
        assert parse_tenant_id("42") == 42
        assert parse_tenant_id(" 3 ") == 3

    @pytest.mark.parametrize("value", ["abc", "", None, 1.5, True, [1]])
    def test_rejects_everything_else(self, value):
        with pytest.raises(InvalidTenantId):
            parse_tenant_id(value)


class TestSyncWindow:
    def test_full_when_never_synced(self):
        window = SyncWindow.for_tenant({"last_synced_at": None})
        assert window.mode == "full"
        assert window.query_filter is None

    def test_incremental_from_watermark(self):
        window = SyncWindow.for_tenant({"last_synced_at": WATERMARK})
        assert window.is_incremental
        assert window.query_filter == f"updated_at:>'{WATERMARK}'"


class TestIngestForTenant:
    def test_full_sync_persists_everything(self, db, tenant_id, make_service):
        fake = FakeShopify(_catalog())

        result = make_service(fake).ingest_for_tenant(tenant_id)

        assert result.mode == "full"
        assert result.counts == {"customers": 3, "products": 2, "orders": 2}
        assert result.line_items == 3
        assert db.count(CUSTOMERS_TABLE, tenant_id) == 3
        assert db.count(PRODUCTS_TABLE, tenant_id) == 2
        assert db.count(ORDERS_TABLE, tenant_id) == 2
        assert db.get_tenant(tenant_id)["last_synced_at"] == result.finished_at

    def test_entities_run_in_dependency_order(self, tenant_id, make_service):
        fake = FakeShopify(_catalog())
        make_service(fake).ingest_for_tenant(tenant_id)
        assert fake.entities() == ["customers", "customers", "products", "orders"]

    def test_full_sync_sends_no_filter(self, tenant_id, make_service):
        fake = FakeShopify(_catalog())
        make_service(fake).ingest_for_tenant(tenant_id)

        assert all(variables["query"] is None for _, variables, _ in fake.calls)

    def test_incremental_sync_filters_every_request(self, db, tenant_id, make_service):
        db.update_last_synced(tenant_id, WATERMARK)
        fake = FakeShopify(_catalog())

        result = make_service(fake).ingest_for_tenant(str(tenant_id))

        assert result.mode == "incremental"
        expected = updated_since_filter(WATERMARK)
        assert len(fake.calls) == 4
        assert all(variables["query"] == expected for _, variables, _ in fake.calls)

    def test_page_sizes_per_entity(self, tenant_id, make_service):
        fake = FakeShopify(_catalog())
        make_service(fake).ingest_for_tenant(tenant_id)

        sizes = {entity: variables["first"] for entity, variables, _ in fake.calls}
        assert sizes == {"customers": 100, "products": 100, "orders": 50}

    def test_orders_link_customers_and_products(self, db, tenant_id, make_service):
        make_service(FakeShopify(_catalog())).ingest_for_tenant(tenant_id)

        known = db.get_row(ORDERS_TABLE, tenant_id, "gid://shopify/Order/1")
        unknown = db.get_row(ORDERS_TABLE, tenant_id, "gid://shopify/Order/2")
        customer = db.get_row(CUSTOMERS_TABLE, tenant_id, "gid://shopify/Customer/1")
        mug = db.get_row(PRODUCTS_TABLE, tenant_id, "gid://shopify/Product/1")

        assert known["customer_id"] == customer["id"]
        assert unknown["customer_id"] is None
        items = db.get_order_items(known["id"])
        assert [i["title"] for i in items] == ["Mug", "Tee"]
        assert items[0]["product_id"] == mug["id"]

    def test_every_stored_row_maps_to_a_remote_record(self, db, tenant_id, make_service):
        catalog = _catalog()
        make_service(FakeShopify(catalog)).ingest_for_tenant(tenant_id)

        for entity, table in (("customers", CUSTOMERS_TABLE), ("products", PRODUCTS_TABLE),
                              ("orders", ORDERS_TABLE)):
            remote_ids = {
                edge["node"]["id"]
                for data in catalog[entity]
                for edge in data[entity]["edges"]
            }
            stored_ids = {row["shopify_id"] for row in db.get_rows(table, tenant_id)}
            assert stored_ids == remote_ids

    def test_resync_replaces_line_items(self, db, tenant_id, make_service):
        make_service(FakeShopify(_catalog())).ingest_for_tenant(tenant_id)

        changed = {"orders": [page("orders", [
            order_node(1, customer_n=1, line_items=[line_item_node("Mug", 5, "50.00", product_n=1)]),
        ])]}
        make_service(FakeShopify(changed)).ingest_for_tenant(tenant_id)

        order = db.get_row(ORDERS_TABLE, tenant_id, "gid://shopify/Order/1")
        items = db.get_order_items(order["id"])
        assert [(i["title"], i["quantity"]) for i in items] == [("Mug", 5)]

    def test_order_without_line_items_key_keeps_existing_items(self, db, tenant_id, make_service):
        make_service(FakeShopify(_catalog())).ingest_for_tenant(tenant_id)

        bare = {"orders": [page("orders", [order_node(1, customer_n=1)])]}
        make_service(FakeShopify(bare)).ingest_for_tenant(tenant_id)

        order = db.get_row(ORDERS_TABLE, tenant_id, "gid://shopify/Order/1")
        assert len(db.get_order_items(order["id"])) == 2

    def test_second_identical_pass_changes_nothing(self, db, tenant_id, make_service):
        make_service(FakeShopify(_catalog())).ingest_for_tenant(tenant_id)
        before = [dict(r, updated_at=None) for r in db.get_rows(CUSTOMERS_TABLE, tenant_id)]
        orders_before = db.get_rows(ORDERS_TABLE, tenant_id)

        make_service(FakeShopify(_catalog())).ingest_for_tenant(tenant_id)

        after = [dict(r, updated_at=None) for r in db.get_rows(CUSTOMERS_TABLE, tenant_id)]
        assert after == before
        assert db.get_rows(ORDERS_TABLE, tenant_id) == orders_before


class TestLineItemPaging:
    def test_items_past_first_page_are_fetched(self, db, tenant_id, make_service):
        fake = FakeShopify({
            "orders": [page("orders", [
                order_node(1, line_items=[line_item_node("Mug")], more_items=True, more_items_cursor="li-1"),
            ])],
            LINE_ITEMS_ENTITY: [
                page(LINE_ITEMS_ENTITY, [line_item_node("Tee")], has_next=True, cursor="li-2"),
                page(LINE_ITEMS_ENTITY, [line_item_node("Cap")]),
            ],
        })

        result = make_service(fake).ingest_for_tenant(tenant_id)

        order = db.get_row(ORDERS_TABLE, tenant_id, "gid://shopify/Order/1")
        assert [i["title"] for i in db.get_order_items(order["id"])] == ["Mug", "Tee", "Cap"]
        assert result.line_items == 3

        follow_ups = [variables for entity, variables, _ in fake.calls if entity == LINE_ITEMS_ENTITY]
        assert follow_ups == [
            {"id": "gid://shopify/Order/1", "first": 50, "cursor": "li-1"},
            {"id": "gid://shopify/Order/1", "first": 50, "cursor": "li-2"},
        ]

    def test_single_page_orders_make_no_extra_calls(self, tenant_id, make_service):
        fake = FakeShopify(_catalog())
        make_service(fake).ingest_for_tenant(tenant_id)
        assert LINE_ITEMS_ENTITY not in fake.entities()

    def test_truncation_without_cursor_is_logged(self, db, tenant_id, make_service, caplog):
        fake = FakeShopify({"orders": [page("orders", [
            order_node(7, line_items=[line_item_node("Mug")], more_items=True),
        ])]})

        with caplog.at_level(logging.WARNING, logger="storesync.ingest.service"):
            make_service(fake).ingest_for_tenant(tenant_id)

        order = db.get_row(ORDERS_TABLE, tenant_id, "gid://shopify/Order/7")
        assert len(db.get_order_items(order["id"])) == 1
        assert "gid://shopify/Order/7" in caplog.text
        assert LINE_ITEMS_ENTITY not in fake.entities()


class TestConcurrentPasses:
    def test_two_passes_for_one_tenant_converge(self, db, tenant_id):
        tenant = db.get_tenant(tenant_id)
        barrier = threading.Barrier(2)
        errors = []

        def sync():
            service = IngestService(db, FakeShopify(_catalog()), Reconciler(db))
            try:
                barrier.wait(timeout=5)
                service.run_pass(tenant)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=sync) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert db.count(CUSTOMERS_TABLE, tenant_id) == 3
        assert db.count(PRODUCTS_TABLE, tenant_id) == 2
        assert db.count(ORDERS_TABLE, tenant_id) == 2
        assert db.count(ORDER_ITEMS_TABLE, tenant_id) == 3
        expected = {"gid://shopify/Order/1": ["Mug", "Tee"], "gid://shopify/Order/2": ["Mug"]}
        for remote_id, titles in expected.items():
            order = db.get_row(ORDERS_TABLE, tenant_id, remote_id)
            assert [i["title"] for i in db.get_order_items(order["id"])] == titles


class TestFailures:
    def test_failure_does_not_advance_watermark(self, db, tenant_id, make_service):
        fake = FakeShopify(_catalog(), fail_entity="orders")

        with pytest.raises(Unavailable):
            make_service(fake).ingest_for_tenant(tenant_id)

        assert db.get_tenant(tenant_id)["last_synced_at"] is None
        # Earlier entities stay committed
        assert db.count(CUSTOMERS_TABLE, tenant_id) == 3
        assert db.count(PRODUCTS_TABLE, tenant_id) == 2

    def test_failure_keeps_previous_watermark(self, db, tenant_id, make_service):
        db.update_last_synced(tenant_id, WATERMARK)
        fake = FakeShopify(_catalog(), fail_entity="customers")

        with pytest.raises(Unavailable):
            make_service(fake).ingest_for_tenant(tenant_id)

        assert db.get_tenant(tenant_id)["last_synced_at"] == WATERMARK

    def test_invalid_tenant_id_makes_no_remote_calls(self, make_service):
        fake = FakeShopify()
        with pytest.raises(InvalidTenantId):
            make_service(fake).ingest_for_tenant("abc")
        assert fake.calls == []

    def test_unknown_tenant(self, make_service):
        fake = FakeShopify()
        with pytest.raises(TenantNotFound):
            make_service(fake).ingest_for_tenant(999)
        assert fake.calls == []


class TestConstruction:
    @pytest.mark.parametrize("size", [10, 49, 101, 250])
    def test_page_size_out_of_range(self, db, size):
        with pytest.raises(ValueError):
            IngestService(db, FakeShopify(), Reconciler(db), page_sizes={"orders": size})

    def test_page_size_override(self, db):
        service = IngestService(db, FakeShopify(), Reconciler(db), page_sizes={"orders": 75})
        assert service.page_sizes == {"customers": 100, "products": 100, "orders": 75}

    def test_watermark_uses_clock_at_finish(self, db, tenant_id):
        ticks = iter(["2024-06-01T00:00:00+00:00", "2024-06-01T00:05:00+00:00"])
        service = IngestService(db, FakeShopify(), Reconciler(db), clock=lambda: next(ticks))

        result = service.ingest_for_tenant(tenant_id)

        assert result.started_at == "2024-06-01T00:00:00+00:00"
        assert db.get_tenant(tenant_id)["last_synced_at"] == "2024-06-01T00:05:00+00:00"
