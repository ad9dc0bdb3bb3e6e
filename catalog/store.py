"""
catalog/store.py
----------------
SQLite product catalog. The search subsystem only reads from it
(list_image_refs, fetch_by_ids); the API also lists and creates products.
"""

from __future__ import annotations
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ["unit_number", "name", "description", "price", "vendor", "type", "size", "image_url"]


class CatalogStore:
    def __init__(self, db_path: str = "app.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._initialize_database()

    def _initialize_database(self):
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unit_number TEXT UNIQUE,
                    name TEXT,
                    description TEXT,
                    price REAL,
                    vendor TEXT,
                    type TEXT,
                    size TEXT,
                    image_url TEXT
                )
            """)
            self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()

    # ---------------------------------------------------
    # Reads used by visual search
    # ---------------------------------------------------
    def list_image_refs(self) -> List[Tuple[int, str]]:
        """(id, image_url) for every product with a non-empty image reference."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT id, image_url FROM products "
                "WHERE image_url IS NOT NULL AND image_url != '' ORDER BY id"
            ).fetchall()
        return [(row["id"], row["image_url"]) for row in rows]

    def fetch_by_ids(self, ids: Iterable[int]) -> List[Dict]:
        """Full rows for `ids`, in the given order. Unknown ids are skipped."""
        ids = [int(i) for i in ids]
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM products WHERE id IN ({placeholders})", ids
            ).fetchall()
        by_id = {row["id"]: dict(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    # ---------------------------------------------------
    # Catalog browsing / admin
    # ---------------------------------------------------
    def list_products(self, vendor: Optional[str] = None, type: Optional[str] = None,
                      min_price: Optional[float] = None, max_price: Optional[float] = None,
                      search: Optional[str] = None) -> List[Dict]:
        query = "SELECT * FROM products WHERE 1=1"
        params: list = []
        if vendor:
            query += " AND vendor = ?"
            params.append(vendor)
        if type:
            query += " AND type = ?"
            params.append(type)
        if min_price is not None:
            query += " AND price >= ?"
            params.append(min_price)
        if max_price is not None:
            query += " AND price <= ?"
            params.append(max_price)
        if search:
            query += " AND (name LIKE ? OR unit_number LIKE ? OR description LIKE ?)"
            params.extend([f"%{search}%"] * 3)
        query += " ORDER BY id"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def create_product(self, fields: Dict) -> int:
        """Insert a product, return its id. Raises sqlite3.IntegrityError on duplicate unit_number."""
        values = [fields.get(name) for name in PRODUCT_FIELDS]
        with self._lock:
            cursor = self.conn.execute(
                f"INSERT INTO products ({', '.join(PRODUCT_FIELDS)}) "
                f"VALUES ({', '.join('?' for _ in PRODUCT_FIELDS)})",
                values,
            )
            self.conn.commit()
            return cursor.lastrowid

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]

    def seed_if_empty(self, products: List[Dict]) -> int:
        """Insert `products` when the table is empty; returns rows inserted."""
        with self._lock:
            if self.conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]:
                return 0
            self.conn.executemany(
                f"INSERT INTO products ({', '.join(PRODUCT_FIELDS)}) "
                f"VALUES ({', '.join('?' for _ in PRODUCT_FIELDS)})",
                [[p.get(name) for name in PRODUCT_FIELDS] for p in products],
            )
            self.conn.commit()
        logger.info("Seeded catalog with %d products", len(products))
        return len(products)
