"""Tests for cursor pagination."""

from unittest.mock import MagicMock

from storesync.shopify.pager import CursorPager, Page, parse_page
from storesync.shopify.queries import (
    GET_ORDER_LINE_ITEMS_QUERY,
    GET_PRODUCTS_QUERY,
    LINE_ITEMS_ENTITY,
    updated_since_filter,
)

from conftest import page, product_node


def _pager(responses, **kwargs):
    client = MagicMock()
    client.call.side_effect = list(responses)
    pager = CursorPager(
        client=client,
        domain="store.myshopify.com",
        credential="shpat_test",
        query=GET_PRODUCTS_QUERY,
        entity="products",
        **kwargs
    )
    return pager, client


class TestParsePage:
    def test_reads_nodes_and_page_info(self):
        parsed = parse_page(page("products", [product_node(1)], has_next=True, cursor="c1"), "products")
        assert [n["id"] for n in parsed.nodes] == ["gid://shopify/Product/1"]
        assert parsed.has_next_page is True
        assert parsed.end_cursor == "c1"

    def test_absent_edges_is_empty_terminal_page(self):
        assert parse_page({"products": {"pageInfo": {"hasNextPage": True}}}, "products") == Page()
        assert parse_page({}, "products") == Page()
        assert parse_page(None, "products") == Page()


class TestCursorPager:
    def test_walks_pages_passing_cursor_verbatim(self):
        opaque = "eyJsYXN0X2lkIjo0MiwibGFzdF92YWx1ZSI6IjQyIn0="
        pager, client = _pager([
            page("products", [product_node(1), product_node(2)], has_next=True, cursor=opaque),
            page("products", [product_node(3)]),
        ], page_size=50)

        pages = list(pager)

        assert [len(p.nodes) for p in pages] == [2, 1]
        first_vars = client.call.call_args_list[0].args[3]
        second_vars = client.call.call_args_list[1].args[3]
        assert first_vars == {"first": 50, "cursor": None, "query": None}
        assert second_vars["cursor"] == opaque

    def test_filter_and_page_size_are_sent_on_every_request(self):
        flt = updated_since_filter("2024-05-01T00:00:00+00:00")
        pager, client = _pager([
            page("products", [product_node(1)], has_next=True, cursor="a"),
            page("products", [product_node(2)], has_next=True, cursor="b"),
            page("products", [product_node(3)]),
        ], page_size=75, query_filter=flt)

        list(pager)

        assert client.call.call_count == 3
        for c in client.call.call_args_list:
            assert c.args[3]["query"] == flt
            assert c.args[3]["first"] == 75

    def test_stops_when_next_page_has_no_cursor(self):
        pager, client = _pager([page("products", [product_node(1)], has_next=True, cursor=None)])

        assert len(list(pager)) == 1
        assert client.call.call_count == 1

    def test_empty_result_yields_one_empty_page(self):
        pager, _ = _pager([{"products": None}])
        assert list(pager) == [Page()]

    def test_start_cursor_resumes_walk(self):
        pager, client = _pager([page("products", [product_node(9)])])

        list(pager.pages(start_cursor="resume-here"))

        assert client.call.call_args.args[3]["cursor"] == "resume-here"

    def test_pages_are_fetched_lazily(self):
        pager, client = _pager([
            page("products", [product_node(1)], has_next=True, cursor="a"),
            page("products", [product_node(2)]),
        ])

        walk = pager.pages()
        next(walk)
        assert client.call.call_count == 1


class TestNestedConnection:
    def test_parse_page_follows_dotted_path(self):
        data = page(LINE_ITEMS_ENTITY, [{"title": "Mug"}], has_next=True, cursor="li-1")

        parsed = parse_page(data, LINE_ITEMS_ENTITY)

        assert parsed.nodes == [{"title": "Mug"}]
        assert parsed.end_cursor == "li-1"
        assert parse_page({"order": None}, LINE_ITEMS_ENTITY) == Page()

    def test_nested_walk_sends_id_and_no_search_filter(self):
        client = MagicMock()
        client.call.side_effect = [page(LINE_ITEMS_ENTITY, [{"title": "Tee"}])]
        pager = CursorPager(
            client=client,
            domain="store.myshopify.com",
            credential="shpat_test",
            query=GET_ORDER_LINE_ITEMS_QUERY,
            entity=LINE_ITEMS_ENTITY,
            searchable=False,
            extra_variables={"id": "gid://shopify/Order/1"}
        )

        pages = list(pager.pages(start_cursor="li-1"))

        assert [p.nodes for p in pages] == [[{"title": "Tee"}]]
        assert client.call.call_args.args[3] == {
            "id": "gid://shopify/Order/1", "first": 50, "cursor": "li-1"
        }
