"""
Cursor-based pagination over one Shopify list query.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .client import ShopifyClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    """One batch of nodes from a list query."""
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None


def parse_page(data: Dict[str, Any], entity: str) -> Page:
    """
    Extract a Page from a GraphQL `data` object.
    `entity` is a dotted path to the connection, e.g. "orders" or "order.lineItems".
    An absent edge collection is an empty terminal page.
    """
    connection = data or {}
    for key in entity.split('.'):
        connection = connection.get(key) or {}
    edges = connection.get('edges')
    if edges is None:
        return Page()

    page_info = connection.get('pageInfo') or {}
    return Page(
        nodes=[edge['node'] for edge in edges if edge and edge.get('node') is not None],
        has_next_page=bool(page_info.get('hasNextPage')),
        end_cursor=page_info.get('endCursor')
    )


class CursorPager:
    """Walks every page of one entity type with a fixed page size and filter."""

    def __init__(
        self,
        client: ShopifyClient,
        domain: str,
        credential: str,
        query: str,
        entity: str,
        page_size: int = 50,
        query_filter: Optional[str] = None,
        searchable: bool = True,
        extra_variables: Optional[Dict[str, Any]] = None
    ):
        self.client = client
        self.domain = domain
        self.credential = credential
        self.query = query
        self.entity = entity
        self.page_size = page_size
        self.query_filter = query_filter
        self.searchable = searchable
        self.extra_variables = dict(extra_variables or {})

    def variables(self, cursor: Optional[str]) -> Dict[str, Any]:
        variables = dict(self.extra_variables)
        variables.update({
            'first': self.page_size,
            'cursor': cursor,
        })
        # Nested connections take no search filter
        if self.searchable:
            variables['query'] = self.query_filter
        return variables

    def pages(self, start_cursor: Optional[str] = None) -> Iterator[Page]:
        """
        Lazily yield pages until hasNextPage is false.
        Each call starts a fresh walk from `start_cursor`.
        """
        cursor = start_cursor
        page_number = 0

        while True:
            data = self.client.call(self.domain, self.credential, self.query, self.variables(cursor))
            page = parse_page(data, self.entity)
            page_number += 1
            logger.debug(
                f"{self.entity} page {page_number}: {len(page.nodes)} nodes, "
                f"hasNextPage={page.has_next_page}"
            )
            yield page

            if not page.has_next_page:
                return
            if not page.end_cursor:
                logger.warning(
                    f"{self.entity}: hasNextPage without endCursor on page {page_number}, stopping"
                )
                return
            cursor = page.end_cursor

    def __iter__(self) -> Iterator[Page]:
        return self.pages()
