import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from skidbuild.clients.customer_api import ExternalSubmissionError
from skidbuild.db import build_session_factory
from skidbuild.models import Base, Order, PlannedItem
from skidbuild.plugins.skid_build import SkidBuildPlugin
from skidbuild.seed import run_seed
from skidbuild.store import SessionStore
from skidbuild.workflow import ScanWorkflow

KANBAN_LENGTH = 216


def build_manifest(order="2023080205", palletization="LB", skid="001B", dock="V8", supplier="02806"):
    return f"02TMI{supplier}{dock}{order:<12}{'IDVV01':<12}{palletization}05{skid}"


def build_kanban(
    part="681010E250",
    kanban="FCJR",
    box=1,
    total=2,
    qty=10,
    pallet="LB",
    part_repeat=None,
    supplier="02806",
    dock="V8",
    line_side="A1-01",
    route="IDVV01",
):
    buf = [" "] * KANBAN_LENGTH

    def put(start, end, value):
        buf[start:end] = str(value)[: end - start].ljust(end - start)

    buf[0] = "C"
    put(1, 12, "BRACKET")
    put(12, 22, part)
    put(31, 36, supplier)
    put(36, 38, dock)
    put(38, 42, kanban)
    put(42, 54, part if part_repeat is None else part_repeat)
    put(54, 64, line_side)
    put(64, 74, "S-01")
    put(74, 79, f"{qty:05d}")
    put(79, 99, "ACME SUPPLY")
    put(125, 133, "20230802")
    put(133, 137, "0630")
    put(151, 155, f"{box:04d}" if isinstance(box, int) else box)
    put(155, 159, f"{total:04d}")
    put(159, 164, "02TMI")
    put(183, 192, route)
    put(193, 195, "BX")
    put(195, 197, pallet)
    return "".join(buf)


def build_internal(part="681010E250", kanban="FCJR", serial="001"):
    return f"{part}/{kanban}/{serial}"


class FakeSubmitter:
    def __init__(self, confirmation="CONF-0001", error=None):
        self.confirmation = confirmation
        self.error = error
        self.calls = []

    def submit(self, path, payload):
        self.calls.append((path, payload))
        if self.error:
            raise ExternalSubmissionError(self.error, status_code=400)
        return self.confirmation


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def store(session_factory):
    return SessionStore(session_factory)


@pytest.fixture(scope="function")
def demo_orders(engine):
    return run_seed(engine)


@pytest.fixture(scope="function")
def make_order(session_factory):
    """Insert an order; items are (part, kanban, planned boxes, palletization, skid)."""

    def _make(order_number, items, dock_code="V8", route="IDVV01"):
        with session_factory() as sess:
            order = Order(
                order_number=order_number,
                dock_code=dock_code,
                supplier_code="02806",
                plant_code="02TMI",
                route=route,
            )
            sess.add(order)
            sess.flush()
            for part, kanban, boxes, palletization, skid in items:
                sess.add(
                    PlannedItem(
                        order_id=order.order_id,
                        part_number=part,
                        kanban_number=kanban,
                        qpc=10,
                        planned_quantity=boxes,
                        manifest_no=order_number,
                        palletization_code=palletization,
                        skid_id=skid,
                    )
                )
            sess.commit()
            return order.order_id

    return _make


@pytest.fixture(scope="function")
def submitter():
    return FakeSubmitter()


@pytest.fixture(scope="function")
def workflow(store, demo_orders, submitter):
    return ScanWorkflow(store, SkidBuildPlugin(), submitter, operator="op1")
