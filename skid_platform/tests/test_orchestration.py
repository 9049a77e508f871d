import pytest

from conftest import build_internal, build_kanban, build_manifest
from skidbuild.clients.customer_api import ExternalSubmissionError
from skidbuild.orchestration import ScanOrchestrator
from skidbuild.plugins.shipment_load import ShipmentLoadPlugin
from skidbuild.plugins.skid_build import SkidBuildPlugin
from skidbuild.registry import PluginNotFoundError, PluginRegistry
from skidbuild.store import OrderNotFoundError, SessionConflictError
from skidbuild.workflow import InvalidTransitionError, WorkflowState


def _registry():
    return PluginRegistry([SkidBuildPlugin, ShipmentLoadPlugin])


@pytest.fixture
def orchestrator(store, demo_orders, submitter):
    return ScanOrchestrator(store, _registry(), submitter)


def test_start_reuses_live_workflow(orchestrator):
    first = orchestrator.start(build_manifest(), operator="op1")
    second = orchestrator.start(build_manifest(skid="001A"), operator="op2")
    assert second is first
    assert first.current.raw_skid_id == "001A"
    with orchestrator.workflow(first.session.session_id) as workflow:
        assert workflow is first


def test_workflow_is_rebuilt_from_the_store(store, orchestrator, submitter):
    started = orchestrator.start(build_manifest())
    started.primary_scan(build_kanban())
    started.secondary_scan(build_internal())

    fresh = ScanOrchestrator(store, _registry(), submitter)
    with fresh.workflow(started.session.session_id) as workflow:
        assert workflow is not started
        assert workflow.state is WorkflowState.AWAITING_PRIMARY
        assert workflow.reconciliation().actual_quantity == 1


def test_start_with_unknown_channel(orchestrator):
    with pytest.raises(PluginNotFoundError):
        orchestrator.start(build_manifest(), channel="edi")


def test_resume_after_failed_submission(orchestrator, submitter):
    workflow = orchestrator.start(build_manifest())
    workflow.add_exception("12", "nothing scanned yet")
    submitter.error = "rejected"
    with pytest.raises(ExternalSubmissionError):
        workflow.submit()

    with pytest.raises(InvalidTransitionError):
        orchestrator.start(build_manifest())

    resumed = orchestrator.resume(workflow.session.session_id)
    assert resumed.state is WorkflowState.AWAITING_PRIMARY
    # Resuming an open session is a no-op.
    assert orchestrator.resume(workflow.session.session_id) is resumed


def test_find_resumable(orchestrator):
    assert orchestrator.find_resumable(order_number="2023080205") is None
    workflow = orchestrator.start(build_manifest())
    assert orchestrator.find_resumable(order_number="2023080205").session_id == workflow.session.session_id
    assert orchestrator.find_resumable(route="IDVV01").session_id == workflow.session.session_id
    with pytest.raises(OrderNotFoundError):
        orchestrator.find_resumable(order_number="0000000000")


def _build_and_submit(orchestrator, session_id):
    with orchestrator.workflow(session_id) as workflow:
        for box in (1, 2):
            workflow.primary_scan(build_kanban(box=box))
            workflow.secondary_scan(build_internal(serial=f"{box:03d}"))
        workflow.add_exception("12", "short")
        return workflow.submit()


def test_completed_workflow_is_released(orchestrator):
    started = orchestrator.start(build_manifest())
    session_id = started.session.session_id
    assert orchestrator.live_session_ids() == [session_id]

    assert _build_and_submit(orchestrator, session_id) == "CONF-0001"
    assert orchestrator.live_session_ids() == []
    assert session_id not in orchestrator._locks

    # Reading a completed session rebuilds it from the store without keeping it.
    with orchestrator.workflow(session_id) as workflow:
        assert workflow is not started
        assert workflow.state is WorkflowState.COMPLETED
    assert orchestrator.live_session_ids() == []
    with pytest.raises(InvalidTransitionError):
        orchestrator.resume(session_id)
    assert orchestrator.live_session_ids() == []


def test_failed_submission_stays_live(orchestrator, submitter):
    session_id = orchestrator.start(build_manifest()).session.session_id
    submitter.error = "rejected"
    with pytest.raises(ExternalSubmissionError):
        _build_and_submit(orchestrator, session_id)
    assert orchestrator.live_session_ids() == [session_id]


def test_shipment_load_starts_after_skid_build(orchestrator):
    skid_build = orchestrator.start(build_manifest()).session.session_id
    with pytest.raises(SessionConflictError):
        orchestrator.start(build_manifest(), channel="shipment_load")

    _build_and_submit(orchestrator, skid_build)
    shipment = orchestrator.start(build_manifest(), channel="shipment_load")
    assert shipment.session.session_id != skid_build
    assert shipment.session.channel.value == "shipment_load"
    assert orchestrator.live_session_ids() == [shipment.session.session_id]

    with pytest.raises(SessionConflictError):
        orchestrator.start(build_manifest())
    with pytest.raises(PluginNotFoundError):
        orchestrator.start(build_manifest(), channel="edi")
