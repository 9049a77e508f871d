from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    COMPLETED = "completed"


RESUMABLE_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.ERROR.value)


class Channel(str, Enum):
    SKID_BUILD = "skid_build"
    SHIPMENT_LOAD = "shipment_load"


class OrderStatus(str, Enum):
    PLANNED = "planned"
    SKID_BUILDING = "skid_building"
    SKID_BUILT = "skid_built"
    SKID_BUILD_ERROR = "skid_build_error"
    SHIPMENT_LOADING = "shipment_loading"
    SHIPPED = "shipped"
    SHIPMENT_ERROR = "shipment_error"


# Order statuses from which a channel may open a new session.
OPENING_STATUSES: dict[Channel, tuple[OrderStatus, ...]] = {
    Channel.SKID_BUILD: (OrderStatus.PLANNED, OrderStatus.SKID_BUILDING, OrderStatus.SKID_BUILD_ERROR),
    Channel.SHIPMENT_LOAD: (OrderStatus.SKID_BUILT, OrderStatus.SHIPMENT_LOADING, OrderStatus.SHIPMENT_ERROR),
}

COMPLETED_STATUS = {
    Channel.SKID_BUILD: OrderStatus.SKID_BUILT,
    Channel.SHIPMENT_LOAD: OrderStatus.SHIPPED,
}

FAILED_STATUS = {
    Channel.SKID_BUILD: OrderStatus.SKID_BUILD_ERROR,
    Channel.SHIPMENT_LOAD: OrderStatus.SHIPMENT_ERROR,
}


class ExceptionCode(str, Enum):
    QUANTITY_REVISION = "10"
    BOX_QUANTITY_CHANGE = "11"
    SUPPLIER_SHORTAGE = "12"
    NON_STANDARD_PACKAGING = "20"
    OTHER = "26"


EXCEPTION_COMMENT_MAX_LENGTH = 100


@dataclass(frozen=True)
class OrderHeader:
    order_id: int
    order_number: str
    dock_code: str
    supplier_code: str
    plant_code: str
    route: str | None = None
    status: str = OrderStatus.PLANNED.value
    confirmation_id: str | None = None
    shipment_confirmation_id: str | None = None


@dataclass(frozen=True)
class ScanDetail:
    """One box physically confirmed by a kanban + internal kanban pair."""

    scan_id: int
    planned_item_id: int
    skid_number: str
    skid_side: str
    raw_skid_id: str
    box_number: int
    internal_kanban: str
    serial_number: str
    palletization_code: str
    line_side_address: str
    scanned_at: datetime
    scanned_by: str | None = None
    session_id: int | None = None


@dataclass
class PlannedLineItem:
    planned_item_id: int
    order_id: int
    part_number: str
    palletization_code: str
    skid_id: str
    planned_quantity: int
    kanban_number: str = ""
    qpc: int = 0
    manifest_no: str = ""
    scan_details: list[ScanDetail] = field(default_factory=list)

    @property
    def scanned_quantity(self) -> int:
        return len(self.scan_details)


@dataclass(frozen=True)
class ExceptionRecord:
    exception_id: int
    session_id: int
    order_id: int
    code: ExceptionCode
    comment: str
    created_at: datetime
    skid_number: int | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class SessionRecord:
    session_id: int
    order_id: int
    status: SessionStatus
    channel: Channel
    created_at: datetime
    updated_at: datetime
    route: str | None = None
    operator: str | None = None
    last_manifest: str | None = None
    confirmation_id: str | None = None
    submission_error: str | None = None
    completed_at: datetime | None = None
