"""Outbound customer API payloads.

Field names are snake_case here and camelCase on the wire; ``dump`` drops
fields left as ``None``.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def dump(model: BaseModel) -> dict:
    return model.model_dump(by_alias=True, exclude_none=True)


class CustomerException(_WireModel):
    exception_code: str
    comments: str | None = None


class RfidDetail(_WireModel):
    rfid: str = ""
    type: str = ""


class KanbanItem(_WireModel):
    line_side_address: str
    part_number: str
    kanban: str
    qpc: int
    box_number: int
    manifest_number: str | None = None
    rf_id: str | None = None
    kanban_cut: bool = False


class Skid(_WireModel):
    palletization: str
    skid_id: str
    kanbans: list[KanbanItem]
    # The customer requires one empty RFID entry rather than an empty list.
    rfid_details: list[RfidDetail] = Field(default_factory=lambda: [RfidDetail()])


class SkidBuildRequest(_WireModel):
    order: str
    supplier: str
    plant: str
    dock: str
    exceptions: list[CustomerException] | None = None
    skids: list[Skid]


class ShipmentSkid(_WireModel):
    palletization: str
    skid_id: str
    exceptions: list[CustomerException] | None = None
    skid_cut: bool = False


class ShipmentOrder(_WireModel):
    order: str
    supplier: str
    plant: str
    dock: str
    pick_up: str
    skids: list[ShipmentSkid]


class ShipmentLoadRequest(_WireModel):
    supplier: str
    route: str
    run: str
    trailer_number: str
    drop_hook: bool = False
    seal_number: str | None = None
    supplier_team_first_name: str | None = None
    supplier_team_last_name: str | None = None
    lp_code: str | None = None
    driver_team_first_name: str | None = None
    driver_team_last_name: str | None = None
    exceptions: list[CustomerException] | None = None
    orders: list[ShipmentOrder]
