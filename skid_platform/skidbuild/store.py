from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from skidbuild.decoding import InternalKanbanScan, ManifestScan
from skidbuild.matching import DuplicateScanError, internal_kanban_key
from skidbuild.models import Order, PlannedItem, ScanSession, SkidBuildException, SkidScan
from skidbuild.records import (
    COMPLETED_STATUS,
    FAILED_STATUS,
    OPENING_STATUSES,
    RESUMABLE_STATUSES,
    Channel,
    ExceptionCode,
    ExceptionRecord,
    OrderHeader,
    OrderStatus,
    PlannedLineItem,
    ScanDetail,
    SessionRecord,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"Persistence failure during {operation}: {cause}")
        self.operation = operation
        self.cause = cause


class OrderNotFoundError(Exception):
    def __init__(self, order_number: str, dock_code: str | None = None):
        detail = f" at dock {dock_code!r}" if dock_code else ""
        super().__init__(f"Order {order_number!r}{detail} not found")
        self.order_number = order_number
        self.dock_code = dock_code


class SessionNotFoundError(Exception):
    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ExceptionNotFoundError(Exception):
    def __init__(self, session_id: int, exception_id: int):
        super().__init__(f"Exception {exception_id} not found on session {session_id}")
        self.session_id = session_id
        self.exception_id = exception_id


class SessionConflictError(Exception):
    def __init__(self, order_id: int, channel: str | None = None):
        if channel is None:
            message = f"Order {order_id} already has an open scanning session"
        else:
            message = f"Order {order_id} already has an open {channel} session"
        super().__init__(message)
        self.order_id = order_id
        self.channel = channel


class OrderNotReadyError(Exception):
    def __init__(self, order_number: str, status: str, channel: Channel):
        allowed = ", ".join(s.value for s in OPENING_STATUSES[channel])
        super().__init__(
            f"Order {order_number} is {status}; {channel.value} needs it to be {allowed}"
        )
        self.order_number = order_number
        self.status = status
        self.channel = channel


class RestartRefusedError(Exception):
    def __init__(self, order_number: str, confirmation_id: str):
        super().__init__(
            f"Order {order_number} was already confirmed ({confirmation_id}) and cannot be restarted"
        )
        self.order_number = order_number
        self.confirmation_id = confirmation_id


_SESSION_FIELDS = frozenset(
    {"status", "last_manifest", "confirmation_id", "submission_error", "completed_at", "operator"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _order_header(row: Order) -> OrderHeader:
    return OrderHeader(
        order_id=row.order_id,
        order_number=row.order_number,
        dock_code=row.dock_code,
        supplier_code=row.supplier_code,
        plant_code=row.plant_code,
        route=row.route,
        status=row.status,
        confirmation_id=row.confirmation_id,
        shipment_confirmation_id=row.shipment_confirmation_id,
    )


def _session_record(row: ScanSession) -> SessionRecord:
    return SessionRecord(
        session_id=row.session_id,
        order_id=row.order_id,
        status=SessionStatus(row.status),
        channel=Channel(row.channel),
        created_at=row.created_at,
        updated_at=row.updated_at,
        route=row.route,
        operator=row.operator,
        last_manifest=row.last_manifest,
        confirmation_id=row.confirmation_id,
        submission_error=row.submission_error,
        completed_at=row.completed_at,
    )


def _scan_detail(row: SkidScan) -> ScanDetail:
    return ScanDetail(
        scan_id=row.scan_id,
        planned_item_id=row.planned_item_id,
        skid_number=row.skid_number,
        skid_side=row.skid_side or "",
        raw_skid_id=row.raw_skid_id or "",
        box_number=row.box_number,
        internal_kanban=row.internal_kanban,
        serial_number=row.internal_kanban_serial or "",
        palletization_code=row.palletization_code or "",
        line_side_address=row.line_side_address or "",
        scanned_at=row.scanned_at,
        scanned_by=row.scanned_by,
        session_id=row.session_id,
    )


def _exception_record(row: SkidBuildException) -> ExceptionRecord:
    return ExceptionRecord(
        exception_id=row.exception_id,
        session_id=row.session_id,
        order_id=row.order_id,
        code=ExceptionCode(row.exception_code),
        comment=row.comments,
        created_at=row.created_at,
        skid_number=row.skid_number,
        created_by=row.created_by,
    )


class SessionStore:
    """Persistence collaborator for scanning sessions.

    Each public method runs in its own short transaction; nothing is left
    half-written when a method raises.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        with self._session_factory() as session:
            try:
                yield session
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Store operation %s failed: %s", operation, exc)
                raise PersistenceError(operation, exc) from exc

    def _session_row(self, session: Session, session_id: int) -> ScanSession:
        row = session.get(ScanSession, session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    # --- orders / baseline ---

    def find_order(self, order_number: str, dock_code: str | None = None) -> OrderHeader:
        with self._transaction("find_order") as session:
            stmt = select(Order).where(Order.order_number == order_number)
            if dock_code:
                stmt = stmt.where(Order.dock_code == dock_code)
            row = session.execute(stmt.order_by(Order.order_id)).scalars().first()
            if row is None:
                raise OrderNotFoundError(order_number, dock_code)
            return _order_header(row)

    def get_order(self, order_id: int) -> OrderHeader:
        with self._transaction("get_order") as session:
            row = session.get(Order, order_id)
            if row is None:
                raise OrderNotFoundError(str(order_id))
            return _order_header(row)

    def load_baseline(self, order_id: int) -> list[PlannedLineItem]:
        with self._transaction("load_baseline") as session:
            items = (
                session.execute(
                    select(PlannedItem)
                    .where(PlannedItem.order_id == order_id)
                    .order_by(PlannedItem.planned_item_id)
                )
                .scalars()
                .all()
            )
            scans = (
                session.execute(
                    select(SkidScan).where(SkidScan.order_id == order_id).order_by(SkidScan.scan_id)
                )
                .scalars()
                .all()
            )
            by_item: dict[int, list[ScanDetail]] = {}
            for scan in scans:
                by_item.setdefault(scan.planned_item_id, []).append(_scan_detail(scan))

            return [
                PlannedLineItem(
                    planned_item_id=item.planned_item_id,
                    order_id=item.order_id,
                    part_number=item.part_number,
                    palletization_code=item.palletization_code or "",
                    skid_id=item.skid_id or "",
                    planned_quantity=item.planned_quantity,
                    kanban_number=item.kanban_number or "",
                    qpc=item.qpc or 0,
                    manifest_no=item.manifest_no or "",
                    scan_details=by_item.get(item.planned_item_id, []),
                )
                for item in items
            ]

    # --- sessions ---

    def create_session(
        self,
        order_id: int,
        channel: Channel = Channel.SKID_BUILD,
        route: str | None = None,
        operator: str | None = None,
    ) -> SessionRecord:
        with self._transaction("create_session") as session:
            channel = Channel(channel)
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(str(order_id))
            if order.status not in {s.value for s in OPENING_STATUSES[channel]}:
                raise OrderNotReadyError(order.order_number, order.status, channel)
            if channel == Channel.SHIPMENT_LOAD:
                order.status = OrderStatus.SHIPMENT_LOADING.value

            now = _utcnow()
            row = ScanSession(
                order_id=order_id,
                status=SessionStatus.ACTIVE.value,
                channel=channel.value,
                route=route,
                operator=operator,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise SessionConflictError(order_id) from exc
            logger.info("Created session %s for order %s via %s", row.session_id, order_id, row.channel)
            return _session_record(row)

    def get_session(self, session_id: int) -> SessionRecord:
        with self._transaction("get_session") as session:
            return _session_record(self._session_row(session, session_id))

    def find_resumable(self, order_id: int | None = None, route: str | None = None) -> SessionRecord | None:
        if order_id is None and route is None:
            raise ValueError("find_resumable needs an order_id or a route")
        with self._transaction("find_resumable") as session:
            stmt = select(ScanSession).where(ScanSession.status.in_(RESUMABLE_STATUSES))
            if order_id is not None:
                stmt = stmt.where(ScanSession.order_id == order_id)
            if route is not None:
                stmt = stmt.where(ScanSession.route == route)
            stmt = stmt.order_by(ScanSession.created_at.desc(), ScanSession.session_id.desc())
            row = session.execute(stmt).scalars().first()
            return _session_record(row) if row is not None else None

    def update_session(self, session_id: int, **changes) -> SessionRecord:
        unknown = set(changes) - _SESSION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
        with self._transaction("update_session") as session:
            row = self._session_row(session, session_id)
            for name, value in changes.items():
                if isinstance(value, SessionStatus):
                    value = value.value
                setattr(row, name, value)
            row.updated_at = _utcnow()
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise SessionConflictError(row.order_id) from exc
            return _session_record(row)

    def complete_session(self, session_id: int, confirmation_id: str) -> SessionRecord:
        with self._transaction("complete_session") as session:
            row = self._session_row(session, session_id)
            now = _utcnow()
            row.status = SessionStatus.COMPLETED.value
            row.confirmation_id = confirmation_id
            row.submission_error = None
            row.completed_at = now
            row.updated_at = now

            channel = Channel(row.channel)
            order = session.get(Order, row.order_id)
            order.status = COMPLETED_STATUS[channel].value
            order.submission_error = None
            if channel == Channel.SHIPMENT_LOAD:
                order.shipment_confirmation_id = confirmation_id
                order.shipped_at = now
            else:
                order.confirmation_id = confirmation_id
                order.submitted_at = now
            logger.info("Session %s completed, confirmation %s", session_id, confirmation_id)
            return _session_record(row)

    def fail_session(self, session_id: int, message: str) -> SessionRecord:
        with self._transaction("fail_session") as session:
            row = self._session_row(session, session_id)
            row.status = SessionStatus.ERROR.value
            row.submission_error = message
            row.updated_at = _utcnow()

            order = session.get(Order, row.order_id)
            order.status = FAILED_STATUS[Channel(row.channel)].value
            order.submission_error = message
            return _session_record(row)

    # --- scans ---

    def commit_scan(
        self,
        session_id: int,
        order_id: int,
        planned_item_id: int,
        manifest: ManifestScan,
        box_number: int,
        line_side_address: str,
        internal: InternalKanbanScan,
        scanned_by: str | None = None,
    ) -> ScanDetail:
        with self._transaction("commit_scan") as session:
            row = SkidScan(
                order_id=order_id,
                planned_item_id=planned_item_id,
                session_id=session_id,
                skid_number=manifest.skid_number,
                skid_side=manifest.skid_side,
                raw_skid_id=manifest.raw_skid_id,
                box_number=box_number,
                line_side_address=line_side_address or None,
                internal_kanban=internal.raw,
                internal_kanban_key=internal_kanban_key(internal.raw),
                internal_kanban_serial=internal.serial_number,
                palletization_code=manifest.palletization_code,
                scanned_by=scanned_by,
                scanned_at=_utcnow(),
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise self._duplicate_from(exc, internal.raw, box_number) from exc

            order = session.get(Order, order_id)
            if order.status == OrderStatus.PLANNED.value:
                order.status = OrderStatus.SKID_BUILDING.value
            return _scan_detail(row)

    @staticmethod
    def _duplicate_from(exc: IntegrityError, internal_kanban: str, box_number: int) -> DuplicateScanError:
        if "internal_kanban" in str(exc.orig):
            return DuplicateScanError(
                DuplicateScanError.INTERNAL_KANBAN,
                f"Internal Kanban {internal_kanban} has already been scanned for this order",
            )
        return DuplicateScanError(
            DuplicateScanError.TOYOTA_KANBAN,
            f"Kanban box {box_number} for this part has already been scanned for this order",
        )

    # --- exceptions ---

    def add_exception(
        self,
        session_id: int,
        order_id: int,
        code: ExceptionCode,
        comment: str,
        skid_number: int | None = None,
        created_by: str | None = None,
    ) -> ExceptionRecord:
        with self._transaction("add_exception") as session:
            row = SkidBuildException(
                order_id=order_id,
                session_id=session_id,
                skid_number=skid_number,
                exception_code=ExceptionCode(code).value,
                comments=comment,
                created_by=created_by,
                created_at=_utcnow(),
            )
            session.add(row)
            session.flush()
            return _exception_record(row)

    def delete_exception(self, session_id: int, exception_id: int) -> None:
        with self._transaction("delete_exception") as session:
            row = session.get(SkidBuildException, exception_id)
            if row is None or row.session_id != session_id:
                raise ExceptionNotFoundError(session_id, exception_id)
            session.delete(row)

    def list_exceptions(self, session_id: int) -> list[ExceptionRecord]:
        with self._transaction("list_exceptions") as session:
            rows = (
                session.execute(
                    select(SkidBuildException)
                    .where(SkidBuildException.session_id == session_id)
                    .order_by(SkidBuildException.exception_id)
                )
                .scalars()
                .all()
            )
            return [_exception_record(r) for r in rows]

    # --- restart ---

    def restart(self, session_id: int) -> SessionRecord:
        """Delete every scan and exception of the session's order in one go.

        The planned baseline is left as is and the session stays open.
        """
        with self._transaction("restart") as session:
            row = self._session_row(session, session_id)
            order = session.get(Order, row.order_id)
            if order.confirmation_id:
                raise RestartRefusedError(order.order_number, order.confirmation_id)

            item_ids = select(PlannedItem.planned_item_id).where(PlannedItem.order_id == order.order_id)
            scans = session.execute(
                delete(SkidScan).where(SkidScan.planned_item_id.in_(item_ids))
            ).rowcount
            exceptions = session.execute(
                delete(SkidBuildException).where(
                    (SkidBuildException.order_id == order.order_id)
                    | (SkidBuildException.session_id == session_id)
                )
            ).rowcount

            order.status = OrderStatus.PLANNED.value
            order.confirmation_id = None
            order.submission_error = None
            order.submitted_at = None

            row.status = SessionStatus.ACTIVE.value
            row.confirmation_id = None
            row.submission_error = None
            row.completed_at = None
            row.updated_at = _utcnow()
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise SessionConflictError(order.order_id) from exc

            logger.info(
                "Restarted session %s for order %s: %s scans, %s exceptions removed",
                session_id, order.order_number, scans, exceptions,
            )
            return _session_record(row)
