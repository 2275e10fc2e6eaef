"""
GraphQL query templates.
Every list query takes the same variables: $first, $cursor and $query (search filter).
The per-order line item query takes $id instead of $query.
"""

LINE_ITEMS_PAGE_SIZE = 50

LINE_ITEM_FIELDS = """
              pageInfo {
                hasNextPage
                endCursor
              }
              edges {
                node {
                  title
                  quantity
                  originalTotalSet {
                    shopMoney {
                      amount
                    }
                  }
                  product {
                    id
                  }
                }
              }"""

GET_CUSTOMERS_QUERY = """
  query getCustomers($first: Int!, $cursor: String, $query: String) {
    customers(first: $first, after: $cursor, query: $query) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        node {
          id
          firstName
          lastName
          email
          amountSpent {
            amount
          }
          numberOfOrders
          createdAt
        }
      }
    }
  }
"""

GET_PRODUCTS_QUERY = """
  query getProducts($first: Int!, $cursor: String, $query: String) {
    products(first: $first, after: $cursor, query: $query) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        node {
          id
          title
          bodyHtml
          vendor
          productType
          status
          createdAt
        }
      }
    }
  }
"""

GET_ORDERS_QUERY = f"""
  query getOrders($first: Int!, $cursor: String, $query: String) {{
    orders(first: $first, after: $cursor, query: $query, sortKey: CREATED_AT, reverse: true) {{
      pageInfo {{
        hasNextPage
        endCursor
      }}
      edges {{
        node {{
          id
          totalPriceSet {{
            shopMoney {{
              amount
              currencyCode
            }}
          }}
          displayFinancialStatus
          displayFulfillmentStatus
          createdAt
          customer {{
            id
          }}
          lineItems(first: {LINE_ITEMS_PAGE_SIZE}) {{{LINE_ITEM_FIELDS}
          }}
        }}
      }}
    }}
  }}
"""

GET_ORDER_LINE_ITEMS_QUERY = f"""
  query getOrderLineItems($id: ID!, $first: Int!, $cursor: String) {{
    order(id: $id) {{
      lineItems(first: $first, after: $cursor) {{{LINE_ITEM_FIELDS}
      }}
    }}
  }}
"""

# Line items of a single order, for orders with more than one page of them
LINE_ITEMS_ENTITY = "order.lineItems"

# entity path -> query template
QUERIES = {
    "customers": GET_CUSTOMERS_QUERY,
    "products": GET_PRODUCTS_QUERY,
    "orders": GET_ORDERS_QUERY,
    LINE_ITEMS_ENTITY: GET_ORDER_LINE_ITEMS_QUERY,
}


def updated_since_filter(watermark: str) -> str:
    """Search filter selecting records updated after the watermark."""
    return f"updated_at:>'{watermark}'"
