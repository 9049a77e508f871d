from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from skidbuild.records import Channel


class ManifestStartRequest(BaseModel):
    raw: str
    channel: Channel = Channel.SKID_BUILD
    operator: str | None = None
    route: str | None = None


class ScanRequest(BaseModel):
    raw: str


class ExceptionRequest(BaseModel):
    code: str
    comment: str
    skid_number: int | None = None


class SubmitRequest(BaseModel):
    details: dict[str, Any] = Field(default_factory=dict)


class SkidView(BaseModel):
    palletization_code: str
    raw_skid_id: str
    planned_quantity: int
    scanned_quantity: int


class PendingView(BaseModel):
    planned_item_id: int
    part_number: str
    box_number: int


class ReconciliationView(BaseModel):
    planned_quantity: int
    actual_quantity: int
    difference: int
    exception_required: bool
    exception_count: int
    can_submit: bool


class ExceptionView(BaseModel):
    exception_id: int
    code: str
    comment: str
    skid_number: int | None = None
    created_by: str | None = None
    created_at: datetime


class ScanDetailView(BaseModel):
    scan_id: int
    planned_item_id: int
    skid_number: str
    skid_side: str
    box_number: int
    internal_kanban: str
    serial_number: str
    palletization_code: str
    scanned_at: datetime


class SessionView(BaseModel):
    session_id: int
    order_id: int
    order_number: str
    order_status: str
    status: str
    state: str
    channel: str
    route: str | None = None
    operator: str | None = None
    confirmation_id: str | None = None
    submission_error: str | None = None
    current_skid: SkidView | None = None
    pending: PendingView | None = None
    reconciliation: ReconciliationView
    exceptions: list[ExceptionView] = Field(default_factory=list)


class ScanResponse(BaseModel):
    session: SessionView
    planned_item_id: int | None = None
    detail: ScanDetailView | None = None


class SubmitResponse(BaseModel):
    status: str
    confirmation_id: str
    session: SessionView


class ResumableSessionView(BaseModel):
    session_id: int
    order_id: int
    status: str
    channel: str
    route: str | None = None
    created_at: datetime
