"""The skid build pairing workflow for one scanning session.

A workflow owns everything an operator accumulates while building skids for
one order: the planned baseline partitioned into skids, the current skid
cursor, the pending primary (kanban) scan, the duplicate guard, and the
session's exceptions. It is created per session and passed around by handle.

Scan level failures (decode, match, palletization, duplicate) raise before any
state is touched, so the operator can simply rescan. A failed submission moves
the session to ERROR with every committed scan kept; ``resume`` reopens it.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from skidbuild.clients.customer_api import ExternalSubmissionError
from skidbuild.decoding import KanbanScan, ManifestScan, decode_internal_kanban, decode_kanban, decode_manifest
from skidbuild.matching import (
    DuplicateGuard,
    MatchError,
    ensure_internal_kanban_pairs,
    ensure_palletization,
    match_kanban,
)
from skidbuild.planned_index import PlannedIndex, SkidGroup, SkidKey, skid_key
from skidbuild.plugins.base import SubmissionContext, SubmissionDetailsError, SubmissionPlugin
from skidbuild.reconciliation import (
    ReconciliationBlockedError,
    ReconciliationSummary,
    ensure_submittable,
    summarize,
    validate_exception,
)
from skidbuild.records import (
    COMPLETED_STATUS,
    FAILED_STATUS,
    Channel,
    ExceptionRecord,
    OrderHeader,
    OrderStatus,
    PlannedLineItem,
    ScanDetail,
    SessionRecord,
    SessionStatus,
)
from skidbuild.store import PersistenceError, SessionConflictError, SessionStore

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    NO_SESSION = "no_session"
    AWAITING_MANIFEST = "awaiting_manifest"
    AWAITING_PRIMARY = "awaiting_primary"
    AWAITING_SECONDARY = "awaiting_secondary"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    ERROR = "error"


class InvalidTransitionError(Exception):
    def __init__(self, operation: str, state: WorkflowState, reason: str | None = None):
        message = f"Cannot {operation} while {state.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.operation = operation
        self.state = state


class Submitter(Protocol):
    def submit(self, path: str, payload: Any) -> str:
        ...


@dataclass(frozen=True)
class PendingPrimary:
    kanban: KanbanScan
    item: PlannedLineItem


_SCANNING = (WorkflowState.AWAITING_MANIFEST, WorkflowState.AWAITING_PRIMARY, WorkflowState.AWAITING_SECONDARY)


class ScanWorkflow:
    def __init__(
        self,
        store: SessionStore,
        plugin: SubmissionPlugin,
        submitter: Submitter,
        operator: str | None = None,
        route: str | None = None,
    ):
        self.store = store
        self.plugin = plugin
        self.submitter = submitter
        self.operator = operator
        self.route = route

        self.state = WorkflowState.NO_SESSION
        self.session: SessionRecord | None = None
        self.order: OrderHeader | None = None
        self.index: PlannedIndex | None = None
        self.manifest: ManifestScan | None = None
        self.pending: PendingPrimary | None = None
        self.exceptions: list[ExceptionRecord] = []
        self.guard = DuplicateGuard()
        self.unsaved_confirmation: str | None = None

    # --- construction from a persisted session ---

    @classmethod
    def load(
        cls,
        store: SessionStore,
        session: SessionRecord,
        plugin: SubmissionPlugin,
        submitter: Submitter,
    ) -> "ScanWorkflow":
        workflow = cls(store, plugin, submitter, operator=session.operator, route=session.route)
        workflow._attach(session, store.get_order(session.order_id))
        workflow.exceptions = store.list_exceptions(session.session_id)

        if session.last_manifest:
            manifest = decode_manifest(session.last_manifest)
            workflow.manifest = manifest
            workflow.index.select(manifest)

        if session.status == SessionStatus.COMPLETED:
            workflow.state = WorkflowState.COMPLETED
        elif session.status == SessionStatus.ERROR:
            workflow.state = WorkflowState.ERROR
        else:
            workflow.state = workflow._scanning_state()
        return workflow

    def _attach(self, session: SessionRecord, order: OrderHeader, items: list[PlannedLineItem] | None = None) -> None:
        self.session = session
        self.order = order
        if items is None:
            items = self.store.load_baseline(order.order_id)
        self.index = PlannedIndex(order, items)
        self.guard = DuplicateGuard(detail for item in self.index.items for detail in item.scan_details)

    @property
    def channel(self) -> Channel:
        return Channel(self.plugin.channel)

    def _scanning_state(self) -> WorkflowState:
        return WorkflowState.AWAITING_PRIMARY if self.index.current is not None else WorkflowState.AWAITING_MANIFEST

    def _require(self, operation: str, *states: WorkflowState) -> None:
        if self.state not in states:
            raise InvalidTransitionError(operation, self.state)

    @property
    def current(self) -> SkidGroup | None:
        return self.index.current if self.index is not None else None

    # --- scanning ---

    def manifest_scan(self, raw: str) -> SkidGroup:
        """Open a session on the first manifest, or move to another skid of the same order."""
        self._require("scan a manifest", WorkflowState.NO_SESSION, WorkflowState.AWAITING_MANIFEST,
                      WorkflowState.AWAITING_PRIMARY)
        manifest = decode_manifest(raw)

        if self.state == WorkflowState.NO_SESSION:
            order = self.store.find_order(manifest.order_number, manifest.dock_code)
            items = self.store.load_baseline(order.order_id)
            index = PlannedIndex(order, items)
            key = self._known_skid(index, manifest)
            session = self._open_session(order)
            order = self.store.get_order(order.order_id)
            if session.status == SessionStatus.ERROR:
                raise InvalidTransitionError(
                    "scan a manifest", WorkflowState.ERROR,
                    f"session {session.session_id} failed submission and must be resumed",
                )
            session = self.store.update_session(session.session_id, last_manifest=manifest.raw)
            self._attach(session, order, items)
            self.exceptions = self.store.list_exceptions(session.session_id)
        else:
            if manifest.order_number != self.order.order_number or manifest.dock_code != self.order.dock_code:
                raise MatchError(
                    f"Manifest belongs to order {manifest.order_number}, "
                    f"not {self.order.order_number}"
                )
            key = self._known_skid(self.index, manifest)
            self.session = self.store.update_session(self.session.session_id, last_manifest=manifest.raw)

        self.manifest = manifest
        group = self.index.select_key(key)
        self.state = WorkflowState.AWAITING_PRIMARY
        logger.info(
            "Session %s now building skid %s of order %s",
            self.session.session_id, key.label(), self.order.order_number,
        )
        return group

    def _open_session(self, order: OrderHeader) -> SessionRecord:
        existing = self.store.find_resumable(order_id=order.order_id)
        if existing is not None:
            return self._join(existing, order)
        try:
            return self.store.create_session(
                order.order_id, self.channel, route=self.route or order.route, operator=self.operator
            )
        except SessionConflictError:
            # Another operator opened the order between our lookup and insert.
            existing = self.store.find_resumable(order_id=order.order_id)
            if existing is None:
                raise
            return self._join(existing, order)

    def _join(self, existing: SessionRecord, order: OrderHeader) -> SessionRecord:
        if existing.channel != self.plugin.channel:
            raise SessionConflictError(order.order_id, Channel(existing.channel).value)
        logger.info("Joining open session %s for order %s", existing.session_id, order.order_number)
        return existing

    @staticmethod
    def _known_skid(index: PlannedIndex, manifest: ManifestScan) -> SkidKey:
        key = skid_key(manifest.palletization_code, manifest.raw_skid_id)
        if key not in index.groups:
            raise MatchError(
                f"Skid {key.label()} is not planned on order {index.order.order_number}",
                skid=key.label(),
            )
        return key

    def primary_scan(self, raw: str) -> PlannedLineItem:
        if self.state == WorkflowState.AWAITING_SECONDARY:
            raise InvalidTransitionError(
                "scan a kanban", self.state, "scan the internal kanban or cancel the pending kanban first"
            )
        self._require("scan a kanban", WorkflowState.AWAITING_PRIMARY)

        kanban = decode_kanban(raw)
        item = match_kanban(kanban, self.index.current)
        ensure_palletization(self.manifest.palletization_code, kanban.pallet_code)
        self.guard.check_kanban_box(item.planned_item_id, kanban.box_number)

        self.pending = PendingPrimary(kanban=kanban, item=item)
        self.state = WorkflowState.AWAITING_SECONDARY
        logger.info(
            "Kanban %s box %s matched planned item %s",
            kanban.part_number, kanban.box_number, item.planned_item_id,
        )
        return item

    def secondary_scan(self, raw: str) -> ScanDetail:
        self._require("scan an internal kanban", WorkflowState.AWAITING_SECONDARY)

        internal = decode_internal_kanban(raw)
        item = self.pending.item
        ensure_internal_kanban_pairs(internal, item)
        self.guard.check_internal_kanban(internal.raw)

        detail = self.store.commit_scan(
            session_id=self.session.session_id,
            order_id=self.order.order_id,
            planned_item_id=item.planned_item_id,
            manifest=self.manifest,
            box_number=self.pending.kanban.box_number,
            line_side_address=self.pending.kanban.line_side_address,
            internal=internal,
            scanned_by=self.operator,
        )
        item.scan_details.append(detail)
        self.guard.record(detail)
        if self.order.status == OrderStatus.PLANNED.value:
            self.order = dataclasses.replace(self.order, status=OrderStatus.SKID_BUILDING.value)

        self.pending = None
        self.state = WorkflowState.AWAITING_PRIMARY
        logger.info(
            "Committed box %s of planned item %s (%s/%s)",
            detail.box_number, item.planned_item_id, item.scanned_quantity, item.planned_quantity,
        )
        return detail

    def cancel(self) -> None:
        self._require("cancel", WorkflowState.AWAITING_SECONDARY)
        logger.info("Discarded pending kanban %s", self.pending.kanban.part_number)
        self.pending = None
        self.state = WorkflowState.AWAITING_PRIMARY

    # --- exceptions ---

    def add_exception(self, code: str, comment: str, skid_number: int | None = None) -> ExceptionRecord:
        self._require("add an exception", *_SCANNING, WorkflowState.ERROR)
        exception_code, text = validate_exception(code, comment)
        record = self.store.add_exception(
            session_id=self.session.session_id,
            order_id=self.order.order_id,
            code=exception_code,
            comment=text,
            skid_number=skid_number,
            created_by=self.operator,
        )
        self.exceptions.append(record)
        return record

    def remove_exception(self, exception_id: int) -> None:
        self._require("remove an exception", *_SCANNING, WorkflowState.ERROR)
        self.store.delete_exception(self.session.session_id, exception_id)
        self.exceptions = [e for e in self.exceptions if e.exception_id != exception_id]

    # --- completion ---

    def reconciliation(self) -> ReconciliationSummary:
        if self.index is None:
            raise InvalidTransitionError("reconcile", self.state)
        return summarize(self.index.items, len(self.exceptions))

    def submit(self, details: dict | None = None) -> str:
        if self.state == WorkflowState.AWAITING_SECONDARY:
            raise InvalidTransitionError(
                "submit", self.state, "scan the internal kanban or cancel the pending kanban first"
            )
        self._require("submit", WorkflowState.AWAITING_MANIFEST, WorkflowState.AWAITING_PRIMARY)

        previous = self.state
        self.state = WorkflowState.RECONCILING
        try:
            ensure_submittable(self.reconciliation())
            payload = self.plugin.build_payload(
                SubmissionContext(
                    order=self.order,
                    items=self.index.items,
                    exceptions=list(self.exceptions),
                    details=details or {},
                )
            )
        except (ReconciliationBlockedError, SubmissionDetailsError):
            self.state = previous
            raise

        try:
            confirmation = self.submitter.submit(self.plugin.endpoint, payload)
        except ExternalSubmissionError as exc:
            self.state = WorkflowState.ERROR
            logger.error(
                "Submission of order %s failed: %s", self.order.order_number, exc.message
            )
            self.session = self.store.fail_session(self.session.session_id, exc.message)
            self.order = dataclasses.replace(self.order, status=FAILED_STATUS[self.channel].value)
            raise

        self._complete(confirmation)
        return confirmation

    def _complete(self, confirmation: str) -> None:
        """Record an accepted submission.

        The customer already holds the confirmation, so a store failure here
        parks the workflow in ERROR with the confirmation kept for ``resume``.
        """
        try:
            self.session = self.store.complete_session(self.session.session_id, confirmation)
        except PersistenceError:
            self.unsaved_confirmation = confirmation
            self.state = WorkflowState.ERROR
            logger.error(
                "Order %s was accepted with confirmation %s but the session could not be saved",
                self.order.order_number, confirmation,
            )
            raise
        self.unsaved_confirmation = None
        if self.channel == Channel.SHIPMENT_LOAD:
            confirmed = {"shipment_confirmation_id": confirmation}
        else:
            confirmed = {"confirmation_id": confirmation}
        self.order = dataclasses.replace(self.order, status=COMPLETED_STATUS[self.channel].value, **confirmed)
        self.state = WorkflowState.COMPLETED

    # --- recovery ---

    def resume(self) -> None:
        self._require("resume", WorkflowState.ERROR)
        if self.unsaved_confirmation is not None:
            self._complete(self.unsaved_confirmation)
            logger.info("Saved confirmation for session %s", self.session.session_id)
            return
        self.session = self.store.update_session(
            self.session.session_id, status=SessionStatus.ACTIVE, submission_error=None
        )
        self.state = self._scanning_state()
        logger.info("Resumed session %s", self.session.session_id)

    def restart(self) -> None:
        """Throw away every scan and exception for the order; the baseline stays."""
        self._require("restart", *_SCANNING, WorkflowState.ERROR)
        if self.unsaved_confirmation is not None:
            raise InvalidTransitionError(
                "restart", self.state,
                f"confirmation {self.unsaved_confirmation} was accepted and must be saved with resume",
            )
        self.session = self.store.restart(self.session.session_id)
        self.index.clear_scans()
        self.guard.clear()
        self.exceptions = []
        self.pending = None
        self.order = dataclasses.replace(
            self.order, status=OrderStatus.PLANNED.value, confirmation_id=None
        )
        self.state = self._scanning_state()
