"""Repository abstraction for fulfillment aggregates.

The lifecycle, reconciliation and gate components depend only on the
Repository interface. Status changes go through compare_and_set_status,
which applies the write only when the stored status still equals the
caller's expectation.

Implementations:
- InMemoryRepository: thread-locked dictionaries, for development/testing
- SQLiteRepository (storage.sqlite_repository): single-file persistence
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from core.errors import NotFound, ValidationError
from core.models import (
    Document,
    GateCheckRecord,
    InviteToken,
    OrderSheet,
    SalesOrder,
    Shipment,
)


class EntityKind(str, Enum):
    ORDER_SHEET = "order_sheets"
    INVITE_TOKEN = "invite_tokens"
    SALES_ORDER = "sales_orders"
    SHIPMENT = "shipments"
    DOCUMENT = "documents"
    GATE_RECORD = "gate_records"


# kind -> (model, parent id field, status field)
ENTITY_SCHEMA: Dict[EntityKind, Tuple[type, Optional[str], Optional[str]]] = {
    EntityKind.ORDER_SHEET: (OrderSheet, None, "status"),
    EntityKind.INVITE_TOKEN: (InviteToken, "order_sheet_id", None),
    EntityKind.SALES_ORDER: (SalesOrder, "source_order_sheet_id", "reconciliation_status"),
    EntityKind.SHIPMENT: (Shipment, "source_sales_order_id", "status"),
    EntityKind.DOCUMENT: (Document, "sales_order_id", "status"),
    EntityKind.GATE_RECORD: (GateCheckRecord, "shipment_id", None),
}


def status_field(kind: EntityKind) -> str:
    field_name = ENTITY_SCHEMA[kind][2]
    if field_name is None:
        raise ValidationError(f"{kind.value} has no status field")
    return field_name


def parent_field(kind: EntityKind) -> Optional[str]:
    return ENTITY_SCHEMA[kind][1]


def _status_value(status: Any) -> Any:
    return getattr(status, "value", status)


def apply_changes(entity: BaseModel, changes: Dict[str, Any]) -> BaseModel:
    """Return a validated copy of entity with changes applied and updated_at bumped."""
    data = entity.model_dump()
    data.update(changes)
    if "updated_at" in type(entity).model_fields:
        data["updated_at"] = datetime.utcnow()
    return type(entity).model_validate(data)


class Repository(ABC):
    """Abstract persistence interface.

    Generic operations are keyed by EntityKind; typed helpers below wrap them
    for the aggregates the core uses.
    """

    @abstractmethod
    def add(self, kind: EntityKind, entity: BaseModel) -> BaseModel:
        """Insert a new entity.

        Raises:
            ValidationError: If an entity with the same id already exists
        """
        pass

    @abstractmethod
    def get(self, kind: EntityKind, entity_id: str) -> Optional[BaseModel]:
        pass

    @abstractmethod
    def save(self, kind: EntityKind, entity: BaseModel) -> BaseModel:
        """Overwrite non-status fields of an existing entity.

        The stored status is preserved; status changes must use
        compare_and_set_status.
        """
        pass

    @abstractmethod
    def list(self, kind: EntityKind, parent_id: Optional[str] = None) -> List[BaseModel]:
        """List entities in insertion order, optionally filtered by parent id."""
        pass

    @abstractmethod
    def compare_and_set_status(
        self,
        kind: EntityKind,
        entity_id: str,
        expected: Any,
        new: Any,
        **changes: Any,
    ) -> Optional[BaseModel]:
        """Atomically set status to new if it currently equals expected.

        Returns:
            The updated entity, or None when the stored status differs

        Raises:
            NotFound: If the entity does not exist
        """
        pass

    @abstractmethod
    def get_or_create_sales_order(self, sales_order: SalesOrder) -> Tuple[SalesOrder, bool]:
        """Return the sales order for sales_order.source_order_sheet_id, creating it if absent.

        Returns:
            (sales_order, created)
        """
        pass

    # =========================================================================
    # Typed helpers
    # =========================================================================

    def require(self, kind: EntityKind, entity_id: str) -> BaseModel:
        entity = self.get(kind, entity_id)
        if entity is None:
            raise NotFound(f"{kind.value} not found: {entity_id}", {"kind": kind.value, "id": entity_id})
        return entity

    def get_order_sheet(self, order_sheet_id: str) -> Optional[OrderSheet]:
        return self.get(EntityKind.ORDER_SHEET, order_sheet_id)

    def get_sales_order(self, sales_order_id: str) -> Optional[SalesOrder]:
        return self.get(EntityKind.SALES_ORDER, sales_order_id)

    def get_sales_order_by_source(self, order_sheet_id: str) -> Optional[SalesOrder]:
        orders = self.list(EntityKind.SALES_ORDER, parent_id=order_sheet_id)
        return orders[0] if orders else None

    def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        return self.get(EntityKind.SHIPMENT, shipment_id)

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.get(EntityKind.DOCUMENT, document_id)

    def get_invite_token(self, token_id: str) -> Optional[InviteToken]:
        return self.get(EntityKind.INVITE_TOKEN, token_id)

    def list_shipments(self, sales_order_id: str) -> List[Shipment]:
        return self.list(EntityKind.SHIPMENT, parent_id=sales_order_id)

    def list_documents(self, sales_order_id: str) -> List[Document]:
        return self.list(EntityKind.DOCUMENT, parent_id=sales_order_id)

    def list_gate_records(self, shipment_id: str) -> List[GateCheckRecord]:
        return self.list(EntityKind.GATE_RECORD, parent_id=shipment_id)


class InMemoryRepository(Repository):
    """In-memory repository for testing and single-process development."""

    def __init__(self):
        self._data: Dict[EntityKind, Dict[str, BaseModel]] = {kind: {} for kind in EntityKind}
        self._lock = threading.RLock()

    def add(self, kind: EntityKind, entity: BaseModel) -> BaseModel:
        with self._lock:
            table = self._data[kind]
            if entity.id in table:
                raise ValidationError(f"{kind.value} already exists: {entity.id}")
            table[entity.id] = entity.model_copy(deep=True)
            return entity

    def get(self, kind: EntityKind, entity_id: str) -> Optional[BaseModel]:
        with self._lock:
            entity = self._data[kind].get(entity_id)
            return entity.model_copy(deep=True) if entity is not None else None

    def save(self, kind: EntityKind, entity: BaseModel) -> BaseModel:
        with self._lock:
            table = self._data[kind]
            stored = table.get(entity.id)
            if stored is None:
                raise NotFound(f"{kind.value} not found: {entity.id}")
            status_name = ENTITY_SCHEMA[kind][2]
            if status_name:
                entity = entity.model_copy(update={status_name: getattr(stored, status_name)})
            table[entity.id] = entity.model_copy(deep=True)
            return entity

    def list(self, kind: EntityKind, parent_id: Optional[str] = None) -> List[BaseModel]:
        parent_name = parent_field(kind)
        with self._lock:
            entities = list(self._data[kind].values())
        if parent_id is not None and parent_name:
            entities = [e for e in entities if getattr(e, parent_name) == parent_id]
        return [e.model_copy(deep=True) for e in entities]

    def compare_and_set_status(self, kind, entity_id, expected, new, **changes):
        status_name = status_field(kind)
        with self._lock:
            stored = self._data[kind].get(entity_id)
            if stored is None:
                raise NotFound(f"{kind.value} not found: {entity_id}")
            if _status_value(getattr(stored, status_name)) != _status_value(expected):
                return None
            changes[status_name] = new
            updated = apply_changes(stored, changes)
            self._data[kind][entity_id] = updated
            return updated.model_copy(deep=True)

    def get_or_create_sales_order(self, sales_order: SalesOrder) -> Tuple[SalesOrder, bool]:
        with self._lock:
            existing = self.get_sales_order_by_source(sales_order.source_order_sheet_id)
            if existing is not None:
                return existing, False
            self.add(EntityKind.SALES_ORDER, sales_order)
            return sales_order, True
