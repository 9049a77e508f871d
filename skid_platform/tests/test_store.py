import pytest
from sqlalchemy import func, select

from conftest import build_manifest
from skidbuild.decoding import decode_internal_kanban, decode_manifest
from skidbuild.matching import DuplicateScanError
from skidbuild.models import Order, PlannedItem, ScanSession, SkidBuildException, SkidScan
from skidbuild.records import Channel, ExceptionCode, OrderStatus, SessionStatus
from skidbuild.store import (
    ExceptionNotFoundError,
    OrderNotFoundError,
    OrderNotReadyError,
    PersistenceError,
    RestartRefusedError,
    SessionConflictError,
    SessionNotFoundError,
    SessionStore,
)

MANIFEST = decode_manifest(build_manifest())


def _commit(store, session_id, order_id, item_id, box, internal="681010E250/FCJR/001"):
    return store.commit_scan(
        session_id=session_id,
        order_id=order_id,
        planned_item_id=item_id,
        manifest=MANIFEST,
        box_number=box,
        line_side_address="A1-01",
        internal=decode_internal_kanban(internal),
        scanned_by="op1",
    )


def _count(session_factory, model):
    with session_factory() as sess:
        return sess.execute(select(func.count()).select_from(model)).scalar()


@pytest.fixture
def order_id(make_order):
    return make_order(
        "2023080205",
        [("681010E250", "FCJR", 5, "LB", "001B"), ("6810202110", "FCJS", 5, "LB", "001A")],
    )


def test_find_order(store, order_id):
    order = store.find_order("2023080205", "V8")
    assert order.order_id == order_id
    assert order.status == OrderStatus.PLANNED.value
    with pytest.raises(OrderNotFoundError):
        store.find_order("2023080205", "Z9")
    with pytest.raises(OrderNotFoundError):
        store.find_order("0000000000")


def test_load_baseline_in_planned_order(store, order_id):
    items = store.load_baseline(order_id)
    assert [i.part_number for i in items] == ["681010E250", "6810202110"]
    assert [i.skid_id for i in items] == ["001B", "001A"]
    assert all(i.scanned_quantity == 0 for i in items)


def test_create_and_get_session(store, order_id):
    created = store.create_session(order_id, Channel.SKID_BUILD, route="IDVV01", operator="op1")
    assert created.status is SessionStatus.ACTIVE
    fetched = store.get_session(created.session_id)
    assert fetched.order_id == order_id
    assert fetched.channel is Channel.SKID_BUILD
    with pytest.raises(SessionNotFoundError):
        store.get_session(9999)


def test_only_one_open_session_per_order(store, order_id):
    store.create_session(order_id)
    with pytest.raises(SessionConflictError):
        store.create_session(order_id)


def test_built_order_opens_only_for_shipment_load(store, order_id):
    first = store.create_session(order_id)
    store.complete_session(first.session_id, "CONF-1")

    with pytest.raises(OrderNotReadyError) as exc:
        store.create_session(order_id, Channel.SKID_BUILD)
    assert exc.value.status == OrderStatus.SKID_BUILT.value

    second = store.create_session(order_id, Channel.SHIPMENT_LOAD)
    assert second.session_id != first.session_id
    assert second.channel is Channel.SHIPMENT_LOAD
    assert store.get_order(order_id).status == OrderStatus.SHIPMENT_LOADING.value


def test_shipment_load_refused_before_skids_are_built(store, session_factory, order_id):
    with pytest.raises(OrderNotReadyError) as exc:
        store.create_session(order_id, Channel.SHIPMENT_LOAD)
    assert exc.value.channel is Channel.SHIPMENT_LOAD
    assert "skid_built" in str(exc.value)

    skid_build = store.create_session(order_id)
    with pytest.raises(OrderNotReadyError):
        store.create_session(order_id, Channel.SHIPMENT_LOAD)
    store.fail_session(skid_build.session_id, "rejected")
    with pytest.raises(OrderNotReadyError):
        store.create_session(order_id, Channel.SHIPMENT_LOAD)
    assert _count(session_factory, ScanSession) == 1


def test_create_session_for_unknown_order(store):
    with pytest.raises(OrderNotFoundError):
        store.create_session(4242)


def test_shipment_load_completion_keeps_skid_build_confirmation(store, order_id):
    skid_build = store.create_session(order_id)
    store.complete_session(skid_build.session_id, "CONF-SKID")
    shipment = store.create_session(order_id, Channel.SHIPMENT_LOAD)

    store.complete_session(shipment.session_id, "CONF-TRAILER")

    order = store.get_order(order_id)
    assert order.status == OrderStatus.SHIPPED.value
    assert order.confirmation_id == "CONF-SKID"
    assert order.shipment_confirmation_id == "CONF-TRAILER"
    with pytest.raises(OrderNotReadyError):
        store.create_session(order_id, Channel.SHIPMENT_LOAD)


def test_failed_shipment_load_marks_shipment_error(store, order_id):
    skid_build = store.create_session(order_id)
    store.complete_session(skid_build.session_id, "CONF-SKID")
    shipment = store.create_session(order_id, Channel.SHIPMENT_LOAD)

    store.fail_session(shipment.session_id, "trailer rejected")

    order = store.get_order(order_id)
    assert order.status == OrderStatus.SHIPMENT_ERROR.value
    assert order.confirmation_id == "CONF-SKID"
    assert order.shipment_confirmation_id is None
    assert store.find_resumable(order_id=order_id).session_id == shipment.session_id


def test_find_resumable_by_order_and_route(store, order_id, make_order):
    other = make_order("2023080206", [("681010E250", "FCJR", 1, "D1", "002A")], route="IDVV02")
    session = store.create_session(order_id, route="IDVV01")
    store.create_session(other, route="IDVV02")

    assert store.find_resumable(order_id=order_id).session_id == session.session_id
    assert store.find_resumable(route="IDVV01").session_id == session.session_id

    store.fail_session(session.session_id, "rejected")
    resumable = store.find_resumable(order_id=order_id)
    assert resumable.status is SessionStatus.ERROR
    assert resumable.submission_error == "rejected"

    store.complete_session(session.session_id, "CONF-2")
    assert store.find_resumable(order_id=order_id) is None
    with pytest.raises(ValueError):
        store.find_resumable()


def test_commit_scan_marks_order_building(store, order_id):
    session = store.create_session(order_id)
    item_id = store.load_baseline(order_id)[0].planned_item_id
    detail = _commit(store, session.session_id, order_id, item_id, 1)
    assert detail.skid_number == "001"
    assert detail.skid_side == "B"
    assert detail.internal_kanban == "681010E250/FCJR/001"
    assert detail.serial_number == "001"
    assert store.get_order(order_id).status == OrderStatus.SKID_BUILDING.value
    assert store.load_baseline(order_id)[0].scanned_quantity == 1


def test_database_rejects_duplicate_scans(store, session_factory, order_id):
    session = store.create_session(order_id)
    item_id = store.load_baseline(order_id)[0].planned_item_id
    _commit(store, session.session_id, order_id, item_id, 1, internal="681010e250/ik-1/001")

    with pytest.raises(DuplicateScanError) as exc:
        _commit(store, session.session_id, order_id, item_id, 2, internal="681010E250/IK-1/001")
    assert exc.value.rule == DuplicateScanError.INTERNAL_KANBAN

    with pytest.raises(DuplicateScanError) as exc:
        _commit(store, session.session_id, order_id, item_id, 1, internal="681010E250/IK-2/003")
    assert exc.value.rule == DuplicateScanError.TOYOTA_KANBAN

    assert _count(session_factory, SkidScan) == 1


def test_exceptions_add_list_delete(store, order_id):
    session = store.create_session(order_id)
    record = store.add_exception(
        session.session_id, order_id, ExceptionCode.SUPPLIER_SHORTAGE, "short", skid_number=1, created_by="op1"
    )
    assert record.code is ExceptionCode.SUPPLIER_SHORTAGE
    assert [e.exception_id for e in store.list_exceptions(session.session_id)] == [record.exception_id]

    store.delete_exception(session.session_id, record.exception_id)
    assert store.list_exceptions(session.session_id) == []
    with pytest.raises(ExceptionNotFoundError):
        store.delete_exception(session.session_id, record.exception_id)


def test_restart_clears_scans_and_exceptions_but_keeps_baseline(store, session_factory, order_id):
    session = store.create_session(order_id)
    items = store.load_baseline(order_id)
    _commit(store, session.session_id, order_id, items[0].planned_item_id, 1, "681010E250/IK-1/001")
    _commit(store, session.session_id, order_id, items[1].planned_item_id, 1, "6810202110/IK-2/001")
    store.add_exception(session.session_id, order_id, ExceptionCode.OTHER, "note")
    store.fail_session(session.session_id, "rejected")

    restarted = store.restart(session.session_id)

    assert restarted.status is SessionStatus.ACTIVE
    assert restarted.submission_error is None
    assert _count(session_factory, SkidScan) == 0
    assert _count(session_factory, SkidBuildException) == 0
    with session_factory() as sess:
        planned = sess.execute(select(PlannedItem.planned_quantity).order_by(PlannedItem.planned_item_id))
        assert [row[0] for row in planned] == [5, 5]
        order = sess.get(Order, order_id)
        assert order.status == OrderStatus.PLANNED.value
        assert order.submission_error is None


def test_restart_refused_after_confirmation(store, order_id):
    session = store.create_session(order_id)
    store.complete_session(session.session_id, "CONF-9")
    with pytest.raises(RestartRefusedError):
        store.restart(session.session_id)


def test_complete_session_marks_order(store, order_id):
    session = store.create_session(order_id)
    completed = store.complete_session(session.session_id, "CONF-3")
    assert completed.status is SessionStatus.COMPLETED
    assert completed.completed_at is not None
    order = store.get_order(order_id)
    assert order.status == OrderStatus.SKID_BUILT.value
    assert order.confirmation_id == "CONF-3"
    assert order.shipment_confirmation_id is None


def test_update_session_rejects_unknown_fields(store, order_id):
    session = store.create_session(order_id)
    with pytest.raises(ValueError):
        store.update_session(session.session_id, order_id=2)


def test_database_failure_surfaces_as_persistence_error(order_id):
    store = SessionStore(lambda: _BrokenSession())
    with pytest.raises(PersistenceError) as exc:
        store.get_order(order_id)
    assert exc.value.operation == "get_order"


class _BrokenSession:
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def get(self, *args, **kwargs):
        from sqlalchemy.exc import OperationalError

        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def rollback(self):
        pass

    def commit(self):
        pass
