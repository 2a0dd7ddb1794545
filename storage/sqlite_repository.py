"""
SQLite Repository

One table per aggregate kind:
- id: entity id (primary key)
- parent_id: owning aggregate id (order sheet, sales order, shipment)
- status: current status, the column compare-and-set operates on
- payload: JSON document of the full pydantic model

Status writes are conditional updates (UPDATE ... WHERE id = ? AND status = ?)
inside an immediate transaction, so concurrent writers cannot both win.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from pydantic import BaseModel

from core.errors import NotFound, ValidationError
from core.models import SalesOrder
from core.observability.logging import get_logger
from storage.repository import (
    ENTITY_SCHEMA,
    EntityKind,
    Repository,
    apply_changes,
    parent_field,
    status_field,
)

logger = get_logger(__name__)


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)


class SQLiteRepository(Repository):
    """Repository persisted to a single SQLite file."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.init_db()

    def get_db_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory (autocommit; transactions are explicit)."""
        conn = sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            for kind in EntityKind:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {kind.value} (
                        id TEXT PRIMARY KEY,
                        parent_id TEXT,
                        status TEXT,
                        payload TEXT NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{kind.value}_parent
                    ON {kind.value}(parent_id)
                """)

            # Exactly one sales order per order sheet
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_sales_orders_source
                ON sales_orders(parent_id)
            """)
        finally:
            conn.close()

    # =========================================================================
    # Row helpers
    # =========================================================================

    @staticmethod
    def _model(kind: EntityKind):
        return ENTITY_SCHEMA[kind][0]

    def _row_to_entity(self, kind: EntityKind, row: sqlite3.Row) -> BaseModel:
        return self._model(kind).model_validate_json(row["payload"])

    @staticmethod
    def _columns(kind: EntityKind, entity: BaseModel) -> Tuple[Optional[str], Optional[str]]:
        parent_name = parent_field(kind)
        status_name = ENTITY_SCHEMA[kind][2]
        parent_id = getattr(entity, parent_name) if parent_name else None
        status = _status_value(getattr(entity, status_name)) if status_name else None
        return parent_id, status

    def _insert(self, cursor: sqlite3.Cursor, kind: EntityKind, entity: BaseModel) -> None:
        parent_id, status = self._columns(kind, entity)
        cursor.execute(
            f"INSERT INTO {kind.value} (id, parent_id, status, payload) VALUES (?, ?, ?, ?)",
            (entity.id, parent_id, status, entity.model_dump_json()),
        )

    # =========================================================================
    # Repository interface
    # =========================================================================

    def add(self, kind: EntityKind, entity: BaseModel) -> BaseModel:
        conn = self.get_db_connection()
        try:
            self._insert(conn.cursor(), kind, entity)
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"{kind.value} already exists: {entity.id}", {"error": str(e)}) from e
        finally:
            conn.close()
        return entity

    def get(self, kind: EntityKind, entity_id: str) -> Optional[BaseModel]:
        conn = self.get_db_connection()
        try:
            row = conn.execute(
                f"SELECT payload FROM {kind.value} WHERE id = ?", (entity_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_entity(kind, row) if row else None

    def save(self, kind: EntityKind, entity: BaseModel) -> BaseModel:
        status_name = ENTITY_SCHEMA[kind][2]
        with self._lock:
            conn = self.get_db_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    f"SELECT status FROM {kind.value} WHERE id = ?", (entity.id,)
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    raise NotFound(f"{kind.value} not found: {entity.id}")
                if status_name:
                    entity = entity.model_copy(update={status_name: row["status"]})
                    entity = type(entity).model_validate(entity.model_dump())
                parent_id, _ = self._columns(kind, entity)
                conn.execute(
                    f"""UPDATE {kind.value}
                        SET parent_id = ?, payload = ?, updated_at = CURRENT_TIMESTAMP
                        WHERE id = ?""",
                    (parent_id, entity.model_dump_json(), entity.id),
                )
                conn.execute("COMMIT")
            finally:
                conn.close()
        return entity

    def list(self, kind: EntityKind, parent_id: Optional[str] = None) -> List[BaseModel]:
        conn = self.get_db_connection()
        try:
            if parent_id is not None and parent_field(kind):
                rows = conn.execute(
                    f"SELECT payload FROM {kind.value} WHERE parent_id = ? ORDER BY rowid",
                    (parent_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT payload FROM {kind.value} ORDER BY rowid"
                ).fetchall()
        finally:
            conn.close()
        return [self._row_to_entity(kind, row) for row in rows]

    def compare_and_set_status(self, kind, entity_id, expected, new, **changes):
        status_name = status_field(kind)
        with self._lock:
            conn = self.get_db_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    f"SELECT status, payload FROM {kind.value} WHERE id = ?", (entity_id,)
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    raise NotFound(f"{kind.value} not found: {entity_id}")

                if row["status"] != _status_value(expected):
                    conn.execute("ROLLBACK")
                    return None

                changes[status_name] = new
                updated = apply_changes(self._row_to_entity(kind, row), changes)
                cursor = conn.execute(
                    f"""UPDATE {kind.value}
                        SET status = ?, payload = ?, updated_at = CURRENT_TIMESTAMP
                        WHERE id = ? AND status = ?""",
                    (_status_value(new), updated.model_dump_json(), entity_id, _status_value(expected)),
                )
                if cursor.rowcount != 1:
                    conn.execute("ROLLBACK")
                    logger.warning(f"Lost status race on {kind.value} {entity_id}")
                    return None
                conn.execute("COMMIT")
                return updated
            finally:
                conn.close()

    def get_or_create_sales_order(self, sales_order: SalesOrder) -> Tuple[SalesOrder, bool]:
        with self._lock:
            conn = self.get_db_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT payload FROM sales_orders WHERE parent_id = ?",
                    (sales_order.source_order_sheet_id,),
                ).fetchone()
                if row is not None:
                    conn.execute("ROLLBACK")
                    return self._row_to_entity(EntityKind.SALES_ORDER, row), False
                self._insert(conn.cursor(), EntityKind.SALES_ORDER, sales_order)
                conn.execute("COMMIT")
                return sales_order, True
            finally:
                conn.close()
