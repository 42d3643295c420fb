# packhouse/models.py

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# ---------- enums (values are what the store holds) ----------

class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class CartonStatus(str, Enum):
    PENDING = "pending"
    OPEN = "open"
    SEALED = "sealed"


class ShipmentKind(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class ShipmentStatus(str, Enum):
    DRAFT = "draft"
    PENDING_DISPATCH = "pending_dispatch"
    LOADING = "loading"
    DISPATCHED = "dispatched"
    CANCELLED = "cancelled"


class ShipmentType(str, Enum):
    TRUCK = "truck"
    COURIER = "courier"
    IN_PERSON = "in_person"


class LoadingStrategy(str, Enum):
    LIFO = "lifo"
    NON_LIFO = "non_lifo"


class _Row(BaseModel):
    """Entity built straight from a store row (column names == field names)."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        return cls.model_validate(row)


# ---------- orders (external) ----------

class CompletedOrder(_Row):
    order_id: str
    order_number: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    ship_to_address: Optional[str] = None
    bill_to_address: Optional[str] = None
    total_items: int = 0
    completed_at: Optional[datetime] = None
    packaging_deleted: bool = False


class OrderLine(_Row):
    id: str
    order_id: str
    sku: str
    item_name: str
    barcode: Optional[str] = None
    quantity_picked: int = 0


class OrderLineView(OrderLine):
    """An order line with what one session has already packed of it."""

    quantity_packed: int = 0

    @computed_field
    @property
    def remaining(self) -> int:
        return self.quantity_picked - self.quantity_packed


# ---------- packaging ----------

class PackagingSession(_Row):
    id: str
    session_token: str
    order_id: str
    customer_name: str
    packaged_by: str
    status: SessionStatus
    total_items: int = 0
    total_cartons: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    shipment_created: bool = False
    shipment_order_id: Optional[str] = None


class AvailableSession(PackagingSession):
    order_number: str = ""
    ship_to_address: Optional[str] = None


class BoxConfiguration(BaseModel):
    box_type: str = "medium"
    quantity: int = Field(1, ge=1)
    estimated_weight: Optional[float] = None


class Carton(_Row):
    id: str
    carton_barcode: str
    session_id: str
    box_number: int
    box_type: str
    estimated_weight: Optional[float] = None
    actual_weight: Optional[float] = None
    status: CartonStatus
    items_count: int = 0
    created_at: datetime
    sealed_at: Optional[datetime] = None
    sealed_by: Optional[str] = None


class LedgerEntry(_Row):
    id: str
    carton_id: str
    line_id: str
    quantity: int
    added_by: str
    added_at: datetime
    sku: Optional[str] = None
    item_name: Optional[str] = None


class ScanValidation(BaseModel):
    line: OrderLine
    remaining: int
    already_packed: int


# ---------- shipments ----------

class ShipmentRecord(_Row):
    id: str
    shipment_id: str
    order_type: ShipmentKind
    status: ShipmentStatus
    destination: Optional[str] = None
    total_cartons: int = 0
    created_by: str
    shipment_type: Optional[ShipmentType] = None
    loading_strategy: Optional[LoadingStrategy] = None
    truck_details: Optional[Dict[str, Any]] = None
    courier_details: Optional[Dict[str, Any]] = None
    in_person_details: Optional[Dict[str, Any]] = None
    special_instructions: Optional[str] = None
    expected_dispatch_at: Optional[datetime] = None
    created_at: datetime
    configured_at: Optional[datetime] = None

    @field_validator("truck_details", "courier_details", "in_person_details", mode="before")
    @classmethod
    def _decode_json(cls, v):
        # stored as JSON text
        if isinstance(v, (str, bytes)):
            return json.loads(v) if v else None
        return v


class ShipmentSessionLink(_Row):
    id: str
    shipment_order_id: str
    session_id: str
    customer_name: str
    order_number: str
    carton_count: int


class ShipmentCarton(_Row):
    id: str
    shipment_order_id: str
    carton_barcode: str
    customer_name: str
    is_loaded: bool = False


class ConsolidationResult(BaseModel):
    shipment: ShipmentRecord
    sessions: List[ShipmentSessionLink]
    customer_count: int
    total_cartons: int


class ShipmentDetails(BaseModel):
    shipment: ShipmentRecord
    sessions: List[ShipmentSessionLink]
    cartons: List[ShipmentCarton]
    cartons_by_customer: Dict[str, List[ShipmentCarton]]
    customer_count: int
    total_cartons: int
