from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator

from buteco.errors import ConflictError, NotFoundError
from buteco.models import DAILY_AGGREGATES, LINE_ITEMS, MENU_ITEMS, TABLES, USERS
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)

BOOL_COLUMNS = {"is_active", "available"}
TIMESTAMP_COLUMNS = {"created_at", "updated_at"}

# (collection, child) -> backing table
CHILD_TABLES = {(TABLES, LINE_ITEMS): "line_items"}


def _row_id(id: str) -> int | None:
    """ids are exposed as strings; sqlite keys are integers"""
    try:
        return int(id)
    except (TypeError, ValueError):
        return None


class SqliteStore(EntityStore):
    """embedded sqlite backend (one file, or :memory: for tests)"""

    def __init__(self, path: str = ":memory:", clock: Callable[[], datetime] = datetime.now):
        super().__init__(clock)
        self.path = path
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.autocommit = True
        self.conn.execute("--sql\nPRAGMA foreign_keys=ON;")
        # one connection shared by every caller
        self._lock = threading.RLock()
        self._create_schema()
        self._columns = {
            table: {r["name"] for r in self.conn.execute(f"PRAGMA table_info({table});")}
            for table in (USERS, MENU_ITEMS, TABLES, DAILY_AGGREGATES, *CHILD_TABLES.values())
        }
        logger.debug("sqlite store ready at %s", path)

    def _create_schema(self):
        """create tables / triggers if missing"""
        self.conn.executescript(
            """--sql
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL CHECK (role IN ('admin', 'cashier', 'waiter', 'kitchen')),
                password_hash TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS menu_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                price REAL NOT NULL,
                category TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                available INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS tables (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed')),
                total_orders INTEGER NOT NULL DEFAULT 0,
                total_revenue REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT
            );
            -- no ON DELETE CASCADE: children must go first
            CREATE TABLE IF NOT EXISTS line_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                parent_id INTEGER NOT NULL,
                item_name TEXT NOT NULL,
                unit_price REAL NOT NULL CHECK (unit_price >= 0),
                quantity INTEGER NOT NULL CHECK (quantity >= 1),
                line_total REAL NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'preparing', 'ready', 'delivered', 'paid')),
                added_by TEXT NOT NULL DEFAULT '',
                menu_item_id TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(parent_id) REFERENCES tables(id)
            );
            CREATE INDEX IF NOT EXISTS idx_line_items_parent ON line_items(parent_id);
            CREATE TABLE IF NOT EXISTS daily_aggregates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL UNIQUE,
                tables_opened INTEGER NOT NULL DEFAULT 0,
                total_orders INTEGER NOT NULL DEFAULT 0,
                total_revenue REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT
            );
            CREATE TRIGGER IF NOT EXISTS trg_menu_price_insert
            BEFORE INSERT ON menu_items
            WHEN NEW.price < 0
            BEGIN
                SELECT RAISE(ABORT, 'price must not be negative');
            END;
            CREATE TRIGGER IF NOT EXISTS trg_menu_price_update
            BEFORE UPDATE ON menu_items
            WHEN NEW.price < 0
            BEGIN
                SELECT RAISE(ABORT, 'price must not be negative');
            END;
            CREATE TRIGGER IF NOT EXISTS trg_tables_delete_open
            BEFORE DELETE ON tables
            WHEN OLD.status = 'open'
            BEGIN
                SELECT RAISE(ABORT, 'open tables cannot be deleted');
            END;
            CREATE TRIGGER IF NOT EXISTS trg_daily_increment_only
            BEFORE UPDATE ON daily_aggregates
            WHEN NEW.tables_opened < OLD.tables_opened
              OR NEW.total_orders < OLD.total_orders
              OR NEW.total_revenue < OLD.total_revenue
            BEGIN
                SELECT RAISE(ABORT, 'daily aggregates are increment-only');
            END;
            """
        )

    # row <-> record conversion
    def _table(self, collection: str) -> str:
        if collection not in self._columns:
            raise ValueError(f"unknown collection {collection!r}")
        return collection

    def _child_table(self, collection: str, child: str) -> str:
        try:
            return CHILD_TABLES[(collection, child)]
        except KeyError:
            raise ValueError(f"unknown sub-collection {collection}/{child}") from None

    def _check_columns(self, table: str, keys) -> list[str]:
        keys = list(keys)
        unknown = [k for k in keys if k not in self._columns[table]]
        if unknown:
            raise ValueError(f"unknown fields for {table}: {', '.join(unknown)}")
        return keys

    @staticmethod
    def _encode(value):
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    @staticmethod
    def _decode(row: sqlite3.Row) -> dict:
        rec = dict(row)
        rec["id"] = str(rec["id"])
        if "parent_id" in rec:
            rec["parent_id"] = str(rec["parent_id"])
        for k in BOOL_COLUMNS & rec.keys():
            rec[k] = bool(rec[k])
        for k in TIMESTAMP_COLUMNS & rec.keys():
            if rec[k] is not None:
                rec[k] = datetime.fromisoformat(rec[k])
        return rec

    def _where(self, table: str, where: dict | None, extra: dict | None = None) -> tuple[str, list]:
        where = {**(where or {}), **(extra or {})}
        if not where:
            return "", []
        cols = self._check_columns(table, where)
        return " WHERE " + " AND ".join(f"{c}=?" for c in cols), [self._encode(where[c]) for c in cols]

    def _execute(self, sql: str, params=()) -> sqlite3.Cursor:
        """run a write, mapping constraint/trigger aborts to ConflictError"""
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise ConflictError(str(e)) from e

    # generic helpers (shared by top-level and child variants)
    def _select(self, table: str, where: dict | None, extra: dict | None = None) -> list[dict]:
        clause, params = self._where(table, where, extra)
        with self._lock:
            rows = self.conn.execute(f"SELECT * FROM {table}{clause} ORDER BY id;", params).fetchall()
        return [self._decode(r) for r in rows]

    def _select_one(self, table: str, id: str, extra: dict | None = None) -> dict:
        rid = _row_id(id)
        if rid is not None:
            rows = self._select(table, {"id": rid}, extra)
            if rows:
                return rows[0]
        raise NotFoundError(f"{table} record {id} not found")

    def _insert(self, table: str, data: dict) -> str:
        data = {**data, "created_at": self.clock()}
        cols = self._check_columns(table, data)
        with self._lock:
            cur = self._execute(
                f"INSERT INTO {table}({', '.join(cols)}) VALUES({', '.join('?' for _ in cols)});",
                [self._encode(data[c]) for c in cols]
            )
            return str(cur.lastrowid)

    def _update(self, table: str, id: str, changes: dict, extra: dict | None = None, op: str = "set"):
        if "updated_at" in self._columns[table]:
            stamp = {"updated_at": self.clock()}
        else:
            stamp = {}
        cols = self._check_columns(table, changes)
        if op == "inc":
            assignments = [f"{c} = {c} + ?" for c in cols]
        else:
            assignments = [f"{c} = ?" for c in cols]
        assignments += [f"{c} = ?" for c in stamp]
        params = [self._encode(changes[c]) for c in cols] + [self._encode(v) for v in stamp.values()]
        rid = _row_id(id)
        clause, where_params = self._where(table, {"id": rid}, extra)
        with self._lock:
            cur = self._execute(f"UPDATE {table} SET {', '.join(assignments)}{clause};", params + where_params)
            if rid is None or cur.rowcount == 0:
                raise NotFoundError(f"{table} record {id} not found")

    def _delete(self, table: str, id: str, extra: dict | None = None):
        rid = _row_id(id)
        if rid is None:
            return
        clause, params = self._where(table, {"id": rid}, extra)
        with self._lock:
            self._execute(f"DELETE FROM {table}{clause};", params)

    # top-level collections
    def get(self, collection, id):
        return self._select_one(self._table(collection), id)

    def list(self, collection, where=None):
        return self._select(self._table(collection), where)

    def count(self, collection, where=None):
        table = self._table(collection)
        clause, params = self._where(table, where)
        with self._lock:
            return self.conn.execute(f"SELECT COUNT(*) FROM {table}{clause};", params).fetchone()[0]

    def create(self, collection, data):
        return self._insert(self._table(collection), data)

    def update(self, collection, id, changes):
        self._update(self._table(collection), id, changes)

    def increment(self, collection, id, deltas):
        self._update(self._table(collection), id, deltas, op="inc")

    def delete(self, collection, id):
        self._delete(self._table(collection), id)

    # sub-collections
    def _parent(self, parent_id: str) -> dict:
        rid = _row_id(parent_id)
        return {"parent_id": rid if rid is not None else -1}

    def get_child(self, collection, parent_id, child, id):
        return self._select_one(self._child_table(collection, child), id, self._parent(parent_id))

    def list_children(self, collection, parent_id, child, where=None):
        return self._select(self._child_table(collection, child), where, self._parent(parent_id))

    def create_child(self, collection, parent_id, child, data):
        self.get(collection, parent_id)
        return self._insert(self._child_table(collection, child), {**data, **self._parent(parent_id)})

    def update_child(self, collection, parent_id, child, id, changes):
        self._update(self._child_table(collection, child), id, changes, self._parent(parent_id))

    def delete_child(self, collection, parent_id, child, id):
        self._delete(self._child_table(collection, child), id, self._parent(parent_id))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """BEGIN/COMMIT around the block, ROLLBACK on error; nested blocks join the outer one"""
        with self._lock:
            if self.conn.in_transaction:
                yield
                return
            self.conn.execute("BEGIN;")
            try:
                yield
            except BaseException:
                self.conn.execute("ROLLBACK;")
                raise
            self.conn.execute("COMMIT;")

    def close(self):
        with self._lock:
            self.conn.close()
