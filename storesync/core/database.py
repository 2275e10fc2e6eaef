"""
Database operations for StoreSync.
Uses SQLite for storage. Every tenant-scoped table is unique on (tenant_id, shopify_id).
"""

import sqlite3
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable
from contextlib import contextmanager

from .errors import PersistenceError

logger = logging.getLogger(__name__)

# Table and column names
TENANTS_TABLE = "tenants"
CUSTOMERS_TABLE = "customers"
PRODUCTS_TABLE = "products"
ORDERS_TABLE = "orders"
ORDER_ITEMS_TABLE = "order_items"
CHECKOUTS_TABLE = "checkouts"

# Tables that can be targeted by the generic upsert
UPSERT_TABLES = {CUSTOMERS_TABLE, PRODUCTS_TABLE, ORDERS_TABLE, CHECKOUTS_TABLE}

ORDER_ITEM_COLUMNS = ("product_id", "title", "quantity", "price")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path, busy_timeout: float = 30.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._ensure_tables()

    @contextmanager
    def _connection(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        """Create tables if they don't exist."""
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {TENANTS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store_name TEXT NOT NULL,
                    store_domain TEXT NOT NULL UNIQUE,
                    access_token TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    last_synced_at TEXT
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CUSTOMERS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id INTEGER NOT NULL,
                    shopify_id TEXT NOT NULL,
                    first_name TEXT,
                    last_name TEXT,
                    email TEXT,
                    total_spent REAL DEFAULT 0,
                    orders_count INTEGER DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE (tenant_id, shopify_id),
                    FOREIGN KEY (tenant_id) REFERENCES {TENANTS_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {PRODUCTS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id INTEGER NOT NULL,
                    shopify_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    body_html TEXT,
                    vendor TEXT,
                    product_type TEXT,
                    status TEXT,
                    created_at TEXT,
                    UNIQUE (tenant_id, shopify_id),
                    FOREIGN KEY (tenant_id) REFERENCES {TENANTS_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {ORDERS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id INTEGER NOT NULL,
                    shopify_id TEXT NOT NULL,
                    customer_id INTEGER,
                    total_price REAL NOT NULL,
                    currency TEXT,
                    financial_status TEXT,
                    fulfillment_status TEXT,
                    created_at TEXT,
                    UNIQUE (tenant_id, shopify_id),
                    FOREIGN KEY (tenant_id) REFERENCES {TENANTS_TABLE}(id),
                    FOREIGN KEY (customer_id) REFERENCES {CUSTOMERS_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {ORDER_ITEMS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    order_id INTEGER NOT NULL,
                    product_id INTEGER,
                    title TEXT,
                    quantity INTEGER DEFAULT 1,
                    price REAL,
                    FOREIGN KEY (order_id) REFERENCES {ORDERS_TABLE}(id),
                    FOREIGN KEY (product_id) REFERENCES {PRODUCTS_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_order_items_order
                ON {ORDER_ITEMS_TABLE}(order_id)
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CHECKOUTS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id INTEGER NOT NULL,
                    shopify_id TEXT NOT NULL,
                    cart_token TEXT,
                    email TEXT,
                    total_price REAL,
                    currency TEXT,
                    abandoned INTEGER DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE (tenant_id, shopify_id),
                    FOREIGN KEY (tenant_id) REFERENCES {TENANTS_TABLE}(id)
                )
            """)

            logger.info(f"Database initialized at {self.db_path}")

    # ==================== Tenant Operations ====================

    def add_tenant(
        self,
        store_name: str,
        store_domain: str,
        access_token: str,
        is_active: bool = True
    ) -> int:
        """Register a tenant. Returns the new tenant id."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                INSERT INTO {TENANTS_TABLE} (store_name, store_domain, access_token, is_active)
                VALUES (?, ?, ?, ?)
            """, (store_name, store_domain, access_token, int(is_active)))
            return cursor.lastrowid

    def get_tenant(self, tenant_id: int) -> Optional[Dict[str, Any]]:
        """Get a single tenant by id."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT * FROM {TENANTS_TABLE} WHERE id = ?", (tenant_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def get_tenants(self, active_only: bool = False) -> List[Dict[str, Any]]:
        """Get all tenants, optionally only the active ones."""
        with self._connection() as conn:
            cursor = conn.cursor()
            query = f"SELECT * FROM {TENANTS_TABLE}"
            if active_only:
                query += " WHERE is_active = 1"
            query += " ORDER BY id"
            cursor.execute(query)
            return [dict(row) for row in cursor.fetchall()]

    def get_active_tenants(self) -> List[Dict[str, Any]]:
        return self.get_tenants(active_only=True)

    def update_last_synced(self, tenant_id: int, timestamp: Optional[str] = None) -> None:
        """Advance the tenant's sync watermark."""
        if timestamp is None:
            timestamp = utc_now()

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {TENANTS_TABLE} SET last_synced_at = ? WHERE id = ?
            """, (timestamp, tenant_id))

    def reset_last_synced(self, tenant_id: int) -> bool:
        """Clear the watermark so the next pass is a full sync."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {TENANTS_TABLE} SET last_synced_at = NULL WHERE id = ?
            """, (tenant_id,))
            return cursor.rowcount > 0

    # ==================== Upsert Operations ====================

    def upsert(
        self,
        table: str,
        tenant_id: int,
        shopify_id: str,
        values: Dict[str, Any],
        update_columns: Iterable[str]
    ) -> int:
        """
        Insert a tenant-scoped row or update it on (tenant_id, shopify_id) conflict.

        All of `values` are written on insert; only `update_columns` are
        refreshed on conflict. Returns the local row id either way.
        """
        if table not in UPSERT_TABLES:
            raise ValueError(f"Table {table} does not support upsert")

        update_columns = list(update_columns)
        if not update_columns:
            raise ValueError("At least one conflict update column is required")
        missing = [c for c in update_columns if c not in values]
        if missing:
            raise ValueError(f"Update columns not present in values: {missing}")

        columns = ["tenant_id", "shopify_id"] + list(values)
        placeholders = ", ".join("?" for _ in columns)
        assignments = ", ".join(f"{c}=excluded.{c}" for c in update_columns)
        params = [tenant_id, shopify_id] + list(values.values())

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                INSERT INTO {table} ({", ".join(columns)})
                VALUES ({placeholders})
                ON CONFLICT(tenant_id, shopify_id) DO UPDATE SET {assignments}
            """, params)
            # lastrowid is unset on the update path, so read the id back in the same transaction
            cursor.execute(
                f"SELECT id FROM {table} WHERE tenant_id = ? AND shopify_id = ?",
                (tenant_id, shopify_id)
            )
            return cursor.fetchone()['id']

    def find_id(self, table: str, tenant_id: int, shopify_id: str) -> Optional[int]:
        """Resolve a remote id to the local row id, None when absent."""
        if table not in UPSERT_TABLES:
            raise ValueError(f"Unknown table {table}")

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT id FROM {table} WHERE tenant_id = ? AND shopify_id = ?
            """, (tenant_id, shopify_id))
            row = cursor.fetchone()
            return row['id'] if row else None

    def get_row(self, table: str, tenant_id: int, shopify_id: str) -> Optional[Dict[str, Any]]:
        if table not in UPSERT_TABLES:
            raise ValueError(f"Unknown table {table}")

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT * FROM {table} WHERE tenant_id = ? AND shopify_id = ?
            """, (tenant_id, shopify_id))
            row = cursor.fetchone()
            return dict(row) if row else None

    def get_rows(self, table: str, tenant_id: int) -> List[Dict[str, Any]]:
        """Get every row of a tenant-scoped table for one tenant."""
        if table not in UPSERT_TABLES:
            raise ValueError(f"Unknown table {table}")

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT * FROM {table} WHERE tenant_id = ? ORDER BY id", (tenant_id,))
            return [dict(row) for row in cursor.fetchall()]

    # ==================== Order Item Operations ====================

    def replace_order_items(self, order_id: int, items: List[Dict[str, Any]]) -> int:
        """Replace all line items for an order (clears existing first)."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"DELETE FROM {ORDER_ITEMS_TABLE} WHERE order_id = ?", (order_id,))

            for item in items:
                cursor.execute(f"""
                    INSERT INTO {ORDER_ITEMS_TABLE}
                    (order_id, {", ".join(ORDER_ITEM_COLUMNS)})
                    VALUES (?, ?, ?, ?, ?)
                """, (order_id,) + tuple(item.get(c) for c in ORDER_ITEM_COLUMNS))

            return len(items)

    def get_order_items(self, order_id: int) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT * FROM {ORDER_ITEMS_TABLE} WHERE order_id = ? ORDER BY id
            """, (order_id,))
            return [dict(row) for row in cursor.fetchall()]

    # ==================== Stats ====================

    def count(self, table: str, tenant_id: Optional[int] = None) -> int:
        """Count rows in a table, optionally for one tenant."""
        if table not in UPSERT_TABLES | {TENANTS_TABLE, ORDER_ITEMS_TABLE}:
            raise ValueError(f"Unknown table {table}")

        with self._connection() as conn:
            cursor = conn.cursor()
            if tenant_id is None:
                cursor.execute(f"SELECT COUNT(*) as count FROM {table}")
            elif table == ORDER_ITEMS_TABLE:
                cursor.execute(f"""
                    SELECT COUNT(*) as count FROM {ORDER_ITEMS_TABLE} i
                    JOIN {ORDERS_TABLE} o ON i.order_id = o.id
                    WHERE o.tenant_id = ?
                """, (tenant_id,))
            else:
                cursor.execute(f"SELECT COUNT(*) as count FROM {table} WHERE tenant_id = ?", (tenant_id,))
            return cursor.fetchone()['count']


# Global database instance
_db_instance: Optional[Database] = None


def get_database(db_path: Optional[Path] = None) -> Database:
    """Get the global database instance."""
    global _db_instance
    if _db_instance is None:
        if db_path is None:
            from .config import get_config
            db_path = get_config().db_path
        _db_instance = Database(db_path)
    return _db_instance
