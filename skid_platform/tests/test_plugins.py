from datetime import datetime

import pytest

from skidbuild.payloads import KanbanItem, dump
from skidbuild.plugins.base import SubmissionContext, SubmissionDetailsError, skid_scans
from skidbuild.plugins.shipment_load import ShipmentLoadPlugin, split_route_run
from skidbuild.plugins.skid_build import SkidBuildPlugin
from skidbuild.records import ExceptionCode, ExceptionRecord, OrderHeader, PlannedLineItem, ScanDetail

ORDER = OrderHeader(
    order_id=1,
    order_number="2023080205",
    dock_code="V8",
    supplier_code="02806",
    plant_code="02TMI",
    route="IDVV01",
)


def _scan(item_id, box, skid="001", side="B", palletization="LB"):
    return ScanDetail(
        scan_id=item_id * 100 + box,
        planned_item_id=item_id,
        skid_number=skid,
        skid_side=side,
        raw_skid_id=skid + side,
        box_number=box,
        internal_kanban=f"P{item_id}/K/{box:03d}",
        serial_number=f"{box:03d}",
        palletization_code=palletization,
        line_side_address="A1-01",
        scanned_at=datetime(2026, 1, 1),
    )


def _items():
    first = PlannedLineItem(
        planned_item_id=1, order_id=1, part_number="681010E250", palletization_code="LB",
        skid_id="001B", planned_quantity=2, kanban_number="FCJR", qpc=10, manifest_no="2023080205",
    )
    first.scan_details.extend([_scan(1, 2), _scan(1, 1)])
    second = PlannedLineItem(
        planned_item_id=2, order_id=1, part_number="627300820100", palletization_code="LB",
        skid_id="001A", planned_quantity=1, kanban_number="FA12", qpc=4,
    )
    second.scan_details.append(_scan(2, 1, side="A"))
    return [first, second]


def _exception(code, comment, skid_number=None, exception_id=1):
    return ExceptionRecord(
        exception_id=exception_id,
        session_id=1,
        order_id=1,
        code=code,
        comment=comment,
        created_at=datetime(2026, 1, 1),
        skid_number=skid_number,
    )


def test_skid_scans_groups_per_physical_skid():
    grouped = skid_scans(_items())
    assert [key for key, _ in grouped] == [("001A", "LB"), ("001B", "LB")]
    assert len(grouped[1][1]) == 2


def test_skid_build_payload_shape():
    payload = SkidBuildPlugin().build_payload(SubmissionContext(order=ORDER, items=_items(), exceptions=[]))

    assert len(payload) == 1
    request = payload[0]
    assert request["order"] == "2023080205"
    assert request["supplier"] == "02806"
    assert request["plant"] == "02TMI"
    assert request["dock"] == "V8"
    assert "exceptions" not in request

    skid_a, skid_b = request["skids"]
    assert skid_a["skidId"] == "001A"
    assert skid_a["palletization"] == "LB"
    assert skid_a["rfidDetails"] == [{"rfid": "", "type": ""}]
    assert "manifestNumber" not in skid_a["kanbans"][0]

    assert [k["boxNumber"] for k in skid_b["kanbans"]] == [1, 2]
    assert skid_b["kanbans"][0] == {
        "lineSideAddress": "A1-01",
        "partNumber": "681010E250",
        "kanban": "FCJR",
        "qpc": 10,
        "boxNumber": 1,
        "manifestNumber": "2023080205",
        "kanbanCut": False,
    }


def test_skid_build_payload_carries_exceptions():
    context = SubmissionContext(
        order=ORDER,
        items=_items(),
        exceptions=[_exception(ExceptionCode.SUPPLIER_SHORTAGE, "short 1")],
    )
    request = SkidBuildPlugin().build_payload(context)[0]
    assert request["exceptions"] == [{"exceptionCode": "12", "comments": "short 1"}]


def test_wire_models_accept_field_names():
    item = KanbanItem(line_side_address="", part_number="P", kanban="K", qpc=1, box_number=3)
    assert dump(item)["boxNumber"] == 3


@pytest.mark.parametrize(
    "route,expected",
    [("IDVV01", ("IDVV", "01")), ("ABC1203", ("ABC12", "03")), ("7", ("7", ""))],
)
def test_split_route_run(route, expected):
    assert split_route_run(route) == expected


def test_shipment_load_payload():
    exceptions = [
        _exception(ExceptionCode.OTHER, "trailer note", exception_id=1),
        _exception(ExceptionCode.SUPPLIER_SHORTAGE, "skid short", skid_number=1, exception_id=2),
    ]
    context = SubmissionContext(
        order=ORDER,
        items=_items(),
        exceptions=exceptions,
        details={
            "trailer_number": "TR-88",
            "seal_number": "S-1",
            "pick_up": datetime(2026, 3, 1, 6, 30, 45),
            "driver_first_name": "Sam",
        },
    )

    payload = ShipmentLoadPlugin().build_payload(context)

    assert payload["supplier"] == "02806"
    assert payload["route"] == "IDVV"
    assert payload["run"] == "01"
    assert payload["trailerNumber"] == "TR-88"
    assert payload["dropHook"] is False
    assert payload["sealNumber"] == "S-1"
    assert payload["driverTeamFirstName"] == "Sam"
    assert "driverTeamLastName" not in payload
    assert payload["exceptions"] == [{"exceptionCode": "26", "comments": "trailer note"}]

    (order,) = payload["orders"]
    assert order["order"] == "2023080205"
    assert order["pickUp"] == "2026-03-01T06:30"
    # Both sides of skid 001 collapse into one entry.
    (skid,) = order["skids"]
    assert skid["skidId"] == "001"
    assert skid["skidCut"] is False
    assert skid["exceptions"] == [{"exceptionCode": "12", "comments": "skid short"}]


def test_shipment_load_route_override():
    context = SubmissionContext(
        order=ORDER, items=_items(), exceptions=[],
        details={"trailer_number": "TR-1", "route_number": "XYZ9904", "run": "07"},
    )
    payload = ShipmentLoadPlugin().build_payload(context)
    assert payload["route"] == "XYZ99"
    assert payload["run"] == "07"


def test_shipment_load_requires_trailer_number():
    context = SubmissionContext(order=ORDER, items=_items(), exceptions=[], details={})
    with pytest.raises(SubmissionDetailsError) as exc:
        ShipmentLoadPlugin().build_payload(context)
    assert exc.value.channel == "shipment_load"
