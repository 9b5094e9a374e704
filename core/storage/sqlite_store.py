"""SQLite persistence for the sync engine.

One database file holds:
- sync_settings: key-value settings
- order_map / product_map / customer_map: local to ERP mappings
- failed_jobs: dead-letter entries
- sync_log: append-only audit trail

Uniqueness constraints carry the idempotency invariants: one ERP document
per order, one item code per product (and vice versa), one partner per
customer ID and per email.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from core.audit.events import SyncLogBackend
from core.models.sync import (
    CustomerMapping,
    DeadLetterEntry,
    DeadLetterResolution,
    OrderMapping,
    ProductMapping,
    SyncLogEntry,
)
from core.storage.stores import (
    DeadLetterStore,
    MappingConflictError,
    MappingStore,
    SettingsStore,
)

DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / "erp_sync.db"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _json(value: Any) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


class SQLiteSyncStore(SettingsStore, MappingStore, DeadLetterStore, SyncLogBackend):
    """All sync persistence on a single SQLite file.

    Usage:
        store = SQLiteSyncStore(Path("erp_sync.db"))
        store.init_db()
    """

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist."""
        conn = self._connect()
        try:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS order_map (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    local_order_id INTEGER NOT NULL UNIQUE,
                    erp_doc_entry INTEGER,
                    erp_doc_num INTEGER,
                    doc_type TEXT NOT NULL DEFAULT 'Orders',
                    sync_status TEXT NOT NULL DEFAULT 'pending',
                    sync_attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    synced_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_order_map_doc_entry ON order_map(erp_doc_entry)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_order_map_status ON order_map(sync_status)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS product_map (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    local_product_id INTEGER NOT NULL UNIQUE,
                    erp_item_code TEXT NOT NULL UNIQUE,
                    sync_enabled INTEGER NOT NULL DEFAULT 1,
                    last_synced_at TEXT,
                    last_known_stock REAL,
                    sync_status TEXT NOT NULL DEFAULT 'pending',
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_product_map_enabled ON product_map(sync_enabled)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS customer_map (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    local_customer_id INTEGER UNIQUE,
                    email TEXT UNIQUE,
                    erp_card_code TEXT NOT NULL,
                    card_name TEXT,
                    sync_status TEXT NOT NULL DEFAULT 'synced',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_customer_map_card ON customer_map(erp_card_code)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS failed_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_type TEXT NOT NULL,
                    job_group TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    error_message TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL DEFAULT 5,
                    failed_at TEXT NOT NULL,
                    resolved_at TEXT,
                    resolution TEXT
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_failed_jobs_resolved ON failed_jobs(resolved_at)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sync_type TEXT NOT NULL,
                    local_id INTEGER,
                    erp_id TEXT,
                    status TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    message TEXT,
                    request_data TEXT,
                    response_data TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_type ON sync_log(sync_type, created_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_local ON sync_log(local_id)")

            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Settings
    # =========================================================================

    def get_setting(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM sync_settings WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    def set_setting(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO sync_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """, (key, value, datetime.utcnow().isoformat()))
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Order mappings
    # =========================================================================

    def get_order_mapping(self, local_order_id: int) -> Optional[OrderMapping]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM order_map WHERE local_order_id = ?", (local_order_id,)
            ).fetchone()
            return _row_to_order_mapping(row) if row else None
        finally:
            conn.close()

    def upsert_order_mapping(self, mapping: OrderMapping) -> OrderMapping:
        now = datetime.utcnow().isoformat()
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO order_map
                (local_order_id, erp_doc_entry, erp_doc_num, doc_type, sync_status,
                 sync_attempts, last_error, synced_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(local_order_id) DO UPDATE SET
                    erp_doc_entry = COALESCE(excluded.erp_doc_entry, order_map.erp_doc_entry),
                    erp_doc_num = COALESCE(excluded.erp_doc_num, order_map.erp_doc_num),
                    doc_type = excluded.doc_type,
                    sync_status = excluded.sync_status,
                    sync_attempts = excluded.sync_attempts,
                    last_error = excluded.last_error,
                    synced_at = COALESCE(excluded.synced_at, order_map.synced_at),
                    updated_at = excluded.updated_at
            """, (
                mapping.local_order_id,
                mapping.erp_doc_entry,
                mapping.erp_doc_num,
                mapping.doc_type,
                mapping.sync_status.value,
                mapping.sync_attempts,
                mapping.last_error,
                _iso(mapping.synced_at),
                now,
                now,
            ))
            conn.commit()
        finally:
            conn.close()
        return self.get_order_mapping(mapping.local_order_id)

    # =========================================================================
    # Product mappings
    # =========================================================================

    def get_product_mapping(self, local_product_id: int) -> Optional[ProductMapping]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM product_map WHERE local_product_id = ?", (local_product_id,)
            ).fetchone()
            return _row_to_product_mapping(row) if row else None
        finally:
            conn.close()

    def get_product_mapping_by_item_code(self, erp_item_code: str) -> Optional[ProductMapping]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM product_map WHERE erp_item_code = ?", (erp_item_code,)
            ).fetchone()
            return _row_to_product_mapping(row) if row else None
        finally:
            conn.close()

    def list_product_mappings(self, enabled_only: bool = True) -> List[ProductMapping]:
        sql = "SELECT * FROM product_map"
        if enabled_only:
            sql += " WHERE sync_enabled = 1"
        sql += " ORDER BY local_product_id"
        conn = self._connect()
        try:
            return [_row_to_product_mapping(row) for row in conn.execute(sql).fetchall()]
        finally:
            conn.close()

    def upsert_product_mapping(self, mapping: ProductMapping) -> ProductMapping:
        now = datetime.utcnow().isoformat()
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO product_map
                (local_product_id, erp_item_code, sync_enabled, last_synced_at,
                 last_known_stock, sync_status, error_message, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(local_product_id) DO UPDATE SET
                    erp_item_code = excluded.erp_item_code,
                    sync_enabled = excluded.sync_enabled,
                    last_synced_at = excluded.last_synced_at,
                    last_known_stock = excluded.last_known_stock,
                    sync_status = excluded.sync_status,
                    error_message = excluded.error_message,
                    updated_at = excluded.updated_at
            """, (
                mapping.local_product_id,
                mapping.erp_item_code,
                1 if mapping.sync_enabled else 0,
                _iso(mapping.last_synced_at),
                mapping.last_known_stock,
                mapping.sync_status.value,
                mapping.error_message,
                now,
                now,
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise MappingConflictError(
                f"Item code {mapping.erp_item_code!r} is already mapped to another product"
            ) from e
        finally:
            conn.close()
        return self.get_product_mapping(mapping.local_product_id)

    def delete_product_mapping(self, local_product_id: int) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM product_map WHERE local_product_id = ?", (local_product_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # =========================================================================
    # Customer mappings
    # =========================================================================

    def get_customer_mapping(
        self,
        local_customer_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> Optional[CustomerMapping]:
        conn = self._connect()
        try:
            row = _find_customer_row(conn, local_customer_id, email)
            return _row_to_customer_mapping(row) if row else None
        finally:
            conn.close()

    def upsert_customer_mapping(self, mapping: CustomerMapping) -> CustomerMapping:
        now = datetime.utcnow().isoformat()
        email = mapping.email.lower() if mapping.email else None
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = _find_customer_row(conn, mapping.local_customer_id, email)
            if row:
                conn.execute("""
                    UPDATE customer_map SET
                        local_customer_id = COALESCE(?, local_customer_id),
                        email = COALESCE(?, email),
                        erp_card_code = ?,
                        card_name = COALESCE(?, card_name),
                        sync_status = ?,
                        updated_at = ?
                    WHERE id = ?
                """, (
                    mapping.local_customer_id,
                    email,
                    mapping.erp_card_code,
                    mapping.card_name,
                    mapping.sync_status.value,
                    now,
                    row["id"],
                ))
                row_id = row["id"]
            else:
                cursor = conn.execute("""
                    INSERT INTO customer_map
                    (local_customer_id, email, erp_card_code, card_name, sync_status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    mapping.local_customer_id,
                    email,
                    mapping.erp_card_code,
                    mapping.card_name,
                    mapping.sync_status.value,
                    now,
                    now,
                ))
                row_id = cursor.lastrowid
            conn.commit()
            stored = conn.execute("SELECT * FROM customer_map WHERE id = ?", (row_id,)).fetchone()
            return _row_to_customer_mapping(stored)
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise MappingConflictError(f"Customer mapping conflict: {e}") from e
        finally:
            conn.close()

    # =========================================================================
    # Dead letters
    # =========================================================================

    def add_dead_letter(self, entry: DeadLetterEntry) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute("""
                INSERT INTO failed_jobs
                (job_type, job_group, payload, error_message, attempts, max_attempts, failed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.job_type.value,
                entry.group.value,
                json.dumps(entry.payload, default=str),
                entry.error_message,
                entry.attempts,
                entry.max_attempts,
                entry.failed_at.isoformat(),
            ))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_dead_letter(self, entry_id: int) -> Optional[DeadLetterEntry]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM failed_jobs WHERE id = ?", (entry_id,)).fetchone()
            return _row_to_dead_letter(row) if row else None
        finally:
            conn.close()

    def list_unresolved(self, limit: int = 50) -> List[DeadLetterEntry]:
        conn = self._connect()
        try:
            rows = conn.execute("""
                SELECT * FROM failed_jobs
                WHERE resolved_at IS NULL
                ORDER BY failed_at DESC, id DESC
                LIMIT ?
            """, (limit,)).fetchall()
            return [_row_to_dead_letter(row) for row in rows]
        finally:
            conn.close()

    def mark_resolved(self, entry_id: int, resolution: DeadLetterResolution) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute("""
                UPDATE failed_jobs SET resolved_at = ?, resolution = ?
                WHERE id = ? AND resolved_at IS NULL
            """, (datetime.utcnow().isoformat(), resolution.value, entry_id))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # =========================================================================
    # Sync log
    # =========================================================================

    def append(self, entry: SyncLogEntry) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute("""
                INSERT INTO sync_log
                (sync_type, local_id, erp_id, status, direction, message,
                 request_data, response_data, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.sync_type,
                entry.local_id,
                entry.erp_id,
                entry.status.value,
                entry.direction.value,
                entry.message,
                _json(entry.request_snapshot),
                _json(entry.response_snapshot),
                entry.created_at.isoformat(),
            ))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def query(
        self,
        sync_type: Optional[str] = None,
        status: Optional[str] = None,
        local_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        clauses: List[str] = []
        params: List[Any] = []
        if sync_type:
            clauses.append("sync_type = ?")
            params.append(sync_type)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if local_id is not None:
            clauses.append("local_id = ?")
            params.append(local_id)
        if since:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())

        sql = "SELECT * FROM sync_log"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        conn = self._connect()
        try:
            return [_row_to_log_entry(row) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def prune(self, older_than: datetime) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM sync_log WHERE created_at < ?", (older_than.isoformat(),))
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()


# =============================================================================
# Row conversion
# =============================================================================

def _find_customer_row(conn: sqlite3.Connection, local_customer_id: Optional[int], email: Optional[str]):
    if local_customer_id:
        row = conn.execute(
            "SELECT * FROM customer_map WHERE local_customer_id = ?", (local_customer_id,)
        ).fetchone()
        if row:
            return row
    if email:
        return conn.execute(
            "SELECT * FROM customer_map WHERE email = ?", (email.lower(),)
        ).fetchone()
    return None


def _row_to_order_mapping(row: sqlite3.Row) -> OrderMapping:
    return OrderMapping(
        local_order_id=row["local_order_id"],
        erp_doc_entry=row["erp_doc_entry"],
        erp_doc_num=row["erp_doc_num"],
        doc_type=row["doc_type"],
        sync_status=row["sync_status"],
        sync_attempts=row["sync_attempts"],
        last_error=row["last_error"],
        synced_at=_dt(row["synced_at"]),
    )


def _row_to_product_mapping(row: sqlite3.Row) -> ProductMapping:
    return ProductMapping(
        local_product_id=row["local_product_id"],
        erp_item_code=row["erp_item_code"],
        sync_enabled=bool(row["sync_enabled"]),
        last_synced_at=_dt(row["last_synced_at"]),
        last_known_stock=row["last_known_stock"],
        sync_status=row["sync_status"],
        error_message=row["error_message"],
    )


def _row_to_customer_mapping(row: sqlite3.Row) -> CustomerMapping:
    return CustomerMapping(
        local_customer_id=row["local_customer_id"],
        email=row["email"],
        erp_card_code=row["erp_card_code"],
        card_name=row["card_name"],
        sync_status=row["sync_status"],
    )


def _row_to_dead_letter(row: sqlite3.Row) -> DeadLetterEntry:
    return DeadLetterEntry(
        id=row["id"],
        job_type=row["job_type"],
        group=row["job_group"],
        payload=json.loads(row["payload"] or "{}"),
        error_message=row["error_message"] or "",
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        failed_at=_dt(row["failed_at"]),
        resolved_at=_dt(row["resolved_at"]),
        resolution=row["resolution"],
    )


def _row_to_log_entry(row: sqlite3.Row) -> SyncLogEntry:
    return SyncLogEntry(
        id=row["id"],
        sync_type=row["sync_type"],
        local_id=row["local_id"],
        erp_id=row["erp_id"],
        status=row["status"],
        direction=row["direction"],
        message=row["message"] or "",
        request_snapshot=json.loads(row["request_data"]) if row["request_data"] else None,
        response_snapshot=json.loads(row["response_data"]) if row["response_data"] else None,
        created_at=_dt(row["created_at"]),
    )
