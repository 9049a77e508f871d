import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query

from skidbuild.clients.customer_api import CustomerApiClient, ExternalSubmissionError
from skidbuild.config import load_app_config
from skidbuild.contracts import (
    ExceptionRequest,
    ExceptionView,
    ManifestStartRequest,
    PendingView,
    ReconciliationView,
    ResumableSessionView,
    ScanDetailView,
    ScanRequest,
    ScanResponse,
    SessionView,
    SkidView,
    SubmitRequest,
    SubmitResponse,
)
from skidbuild.db import build_engine, build_session_factory, load_db_config
from skidbuild.decoding import StructuralDecodeError
from skidbuild.logging_setup import setup_logging
from skidbuild.matching import DuplicateScanError, MatchError, PalletizationMismatchError
from skidbuild.models import Base
from skidbuild.orchestration import ScanOrchestrator
from skidbuild.plugins.base import SubmissionDetailsError
from skidbuild.plugins.shipment_load import ShipmentLoadPlugin
from skidbuild.plugins.skid_build import SkidBuildPlugin
from skidbuild.reconciliation import InvalidExceptionError, ReconciliationBlockedError
from skidbuild.records import ScanDetail
from skidbuild.registry import PluginNotFoundError, PluginRegistry
from skidbuild.seed import run_seed
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
from skidbuild.workflow import InvalidTransitionError, ScanWorkflow

# --- Config / logging ---
_app_config = load_app_config()
setup_logging(_app_config.log_level)
logger = logging.getLogger(__name__)

# --- DB setup ---
_config = load_db_config()
_engine = build_engine(_config)
_session_factory = build_session_factory(_engine)
Base.metadata.create_all(bind=_engine)

# --- Plugin registry ---
_registry = PluginRegistry([SkidBuildPlugin, ShipmentLoadPlugin])

# --- Orchestrator ---
_orchestrator = ScanOrchestrator(
    SessionStore(_session_factory), _registry, CustomerApiClient(_app_config.customer_api)
)

# --- FastAPI app ---
app = FastAPI(title="Skid Build Scan API")


def get_orchestrator() -> ScanOrchestrator:
    return _orchestrator


_ERROR_STATUS = (
    (StructuralDecodeError, 400),
    (PluginNotFoundError, 400),
    (OrderNotFoundError, 404),
    (SessionNotFoundError, 404),
    (ExceptionNotFoundError, 404),
    (DuplicateScanError, 409),
    (InvalidTransitionError, 409),
    (SessionConflictError, 409),
    (OrderNotReadyError, 409),
    (RestartRefusedError, 409),
    (MatchError, 422),
    (PalletizationMismatchError, 422),
    (ReconciliationBlockedError, 422),
    (InvalidExceptionError, 422),
    (SubmissionDetailsError, 422),
    (ExternalSubmissionError, 502),
    (PersistenceError, 503),
)


@contextmanager
def _domain_errors():
    try:
        yield
    except tuple(cls for cls, _ in _ERROR_STATUS) as exc:
        status = next(code for cls, code in _ERROR_STATUS if isinstance(exc, cls))
        if status < 500:
            logger.warning("Rejected: %s", exc)
        raise HTTPException(status_code=status, detail=str(exc)) from exc


def _detail_view(detail: ScanDetail) -> ScanDetailView:
    return ScanDetailView(
        scan_id=detail.scan_id,
        planned_item_id=detail.planned_item_id,
        skid_number=detail.skid_number,
        skid_side=detail.skid_side,
        box_number=detail.box_number,
        internal_kanban=detail.internal_kanban,
        serial_number=detail.serial_number,
        palletization_code=detail.palletization_code,
        scanned_at=detail.scanned_at,
    )


def _session_view(workflow: ScanWorkflow) -> SessionView:
    session = workflow.session
    group = workflow.current
    pending = workflow.pending
    return SessionView(
        session_id=session.session_id,
        order_id=session.order_id,
        order_number=workflow.order.order_number,
        order_status=workflow.order.status,
        status=session.status.value,
        state=workflow.state.value,
        channel=session.channel.value,
        route=session.route,
        operator=session.operator,
        confirmation_id=session.confirmation_id,
        submission_error=session.submission_error,
        current_skid=SkidView(
            palletization_code=group.palletization_code,
            raw_skid_id=group.raw_skid_id,
            planned_quantity=group.planned_quantity,
            scanned_quantity=group.scanned_quantity,
        )
        if group
        else None,
        pending=PendingView(
            planned_item_id=pending.item.planned_item_id,
            part_number=pending.kanban.part_number,
            box_number=pending.kanban.box_number,
        )
        if pending
        else None,
        reconciliation=_reconciliation_view(workflow),
        exceptions=[
            ExceptionView(
                exception_id=e.exception_id,
                code=e.code.value,
                comment=e.comment,
                skid_number=e.skid_number,
                created_by=e.created_by,
                created_at=e.created_at,
            )
            for e in workflow.exceptions
        ],
    )


def _reconciliation_view(workflow: ScanWorkflow) -> ReconciliationView:
    summary = workflow.reconciliation()
    return ReconciliationView(
        planned_quantity=summary.planned_quantity,
        actual_quantity=summary.actual_quantity,
        difference=summary.difference,
        exception_required=summary.exception_required,
        exception_count=summary.exception_count,
        can_submit=summary.can_submit,
    )


@app.get("/health")
def health():
    return {"status": "ok", "channels": _registry.channels()}


@app.post("/scan/manifest", response_model=ScanResponse)
def start_with_manifest(
    payload: ManifestStartRequest, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
):
    with _domain_errors():
        workflow = orchestrator.start(
            payload.raw, channel=payload.channel.value, operator=payload.operator, route=payload.route
        )
        return ScanResponse(session=_session_view(workflow))


@app.get("/sessions/resumable", response_model=Optional[ResumableSessionView])
def get_resumable_session(
    order_number: Optional[str] = Query(None),
    route: Optional[str] = Query(None),
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    if not order_number and not route:
        raise HTTPException(status_code=400, detail="order_number or route is required")
    with _domain_errors():
        session = orchestrator.find_resumable(order_number=order_number, route=route)
    if session is None:
        return None
    return ResumableSessionView(
        session_id=session.session_id,
        order_id=session.order_id,
        status=session.status.value,
        channel=session.channel.value,
        route=session.route,
        created_at=session.created_at,
    )


@app.get("/sessions/{session_id}", response_model=SessionView)
def get_session_state(session_id: int, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        return _session_view(workflow)


@app.get("/sessions/{session_id}/reconciliation", response_model=ReconciliationView)
def get_reconciliation(session_id: int, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        return _reconciliation_view(workflow)


@app.post("/sessions/{session_id}/manifest", response_model=ScanResponse)
def scan_manifest(
    session_id: int, payload: ScanRequest, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        workflow.manifest_scan(payload.raw)
        return ScanResponse(session=_session_view(workflow))


@app.post("/sessions/{session_id}/primary", response_model=ScanResponse)
def scan_primary(
    session_id: int, payload: ScanRequest, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        item = workflow.primary_scan(payload.raw)
        return ScanResponse(session=_session_view(workflow), planned_item_id=item.planned_item_id)


@app.post("/sessions/{session_id}/secondary", response_model=ScanResponse)
def scan_secondary(
    session_id: int, payload: ScanRequest, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        detail = workflow.secondary_scan(payload.raw)
        return ScanResponse(
            session=_session_view(workflow),
            planned_item_id=detail.planned_item_id,
            detail=_detail_view(detail),
        )


@app.post("/sessions/{session_id}/cancel", response_model=ScanResponse)
def cancel_pending(session_id: int, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        workflow.cancel()
        return ScanResponse(session=_session_view(workflow))


@app.post("/sessions/{session_id}/exceptions", response_model=ExceptionView)
def add_exception(
    session_id: int, payload: ExceptionRequest, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        record = workflow.add_exception(payload.code, payload.comment, payload.skid_number)
        return ExceptionView(
            exception_id=record.exception_id,
            code=record.code.value,
            comment=record.comment,
            skid_number=record.skid_number,
            created_by=record.created_by,
            created_at=record.created_at,
        )


@app.delete("/sessions/{session_id}/exceptions/{exception_id}", status_code=204)
def remove_exception(
    session_id: int, exception_id: int, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        workflow.remove_exception(exception_id)


@app.post("/sessions/{session_id}/submit", response_model=SubmitResponse)
def submit_session(
    session_id: int,
    payload: SubmitRequest | None = None,
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        confirmation = workflow.submit(payload.details if payload else None)
        return SubmitResponse(
            status="completed", confirmation_id=confirmation, session=_session_view(workflow)
        )


@app.post("/sessions/{session_id}/restart", response_model=ScanResponse)
def restart_session(session_id: int, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    with _domain_errors(), orchestrator.workflow(session_id) as workflow:
        workflow.restart()
        return ScanResponse(session=_session_view(workflow))


@app.post("/sessions/{session_id}/resume", response_model=ScanResponse)
def resume_session(session_id: int, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    with _domain_errors():
        workflow = orchestrator.resume(session_id)
        return ScanResponse(session=_session_view(workflow))


@app.post("/admin/seed")
def admin_seed(x_admin_token: Optional[str] = Header(None)):
    if not _app_config.admin_token:
        raise HTTPException(status_code=403, detail="Admin endpoints are disabled")
    if x_admin_token != _app_config.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")
    return {"status": "ok", "inserted": run_seed(_engine)}
