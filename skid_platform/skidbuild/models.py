from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from skidbuild.decoding import INTERNAL_KANBAN_MAX_LENGTH, MANIFEST_MAX_LENGTH


class Base(DeclarativeBase):
    pass


class Order(Base):
    __tablename__ = "orders"

    order_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(20), nullable=False)
    dock_code: Mapped[str] = mapped_column(String(3), nullable=False)
    supplier_code: Mapped[str] = mapped_column(String(5), nullable=False)
    plant_code: Mapped[str] = mapped_column(String(5), nullable=False)
    route: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="planned")
    confirmation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    submission_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    shipment_confirmation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    planned_items: Mapped[list["PlannedItem"]] = relationship(
        back_populates="order", order_by="PlannedItem.planned_item_id"
    )
    sessions: Mapped[list["ScanSession"]] = relationship(back_populates="order")

    __table_args__ = (
        UniqueConstraint("order_number", "dock_code", name="uq_order_number_dock"),
        Index("ix_order_route", "route"),
    )


class PlannedItem(Base):
    __tablename__ = "planned_items"

    planned_item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.order_id"), nullable=False)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    kanban_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    qpc: Mapped[int | None] = mapped_column(Integer, nullable=True)
    planned_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    manifest_no: Mapped[str | None] = mapped_column(String(20), nullable=True)
    palletization_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    skid_id: Mapped[str | None] = mapped_column(String(4), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    order: Mapped["Order"] = relationship(back_populates="planned_items")
    scans: Mapped[list["SkidScan"]] = relationship(
        back_populates="planned_item", order_by="SkidScan.scan_id"
    )

    __table_args__ = (
        Index("ix_planned_order", "order_id"),
        Index("ix_planned_skid", "order_id", "palletization_code", "skid_id"),
    )


class ScanSession(Base):
    __tablename__ = "scan_sessions"

    session_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.order_id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="skid_build")
    route: Mapped[str | None] = mapped_column(String(50), nullable=True)
    operator: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_manifest: Mapped[str | None] = mapped_column(String(MANIFEST_MAX_LENGTH), nullable=True)
    confirmation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    submission_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="sessions")

    __table_args__ = (
        # At most one resumable session per order.
        Index(
            "uq_session_open_per_order",
            "order_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'error')"),
            postgresql_where=text("status IN ('active', 'error')"),
        ),
        Index("ix_session_route_status", "route", "status"),
    )


class SkidScan(Base):
    __tablename__ = "skid_scans"

    scan_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.order_id"), nullable=False)
    planned_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("planned_items.planned_item_id"), nullable=False
    )
    session_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("scan_sessions.session_id"), nullable=True
    )
    skid_number: Mapped[str] = mapped_column(String(3), nullable=False)
    skid_side: Mapped[str | None] = mapped_column(String(1), nullable=True)
    raw_skid_id: Mapped[str | None] = mapped_column(String(4), nullable=True)
    box_number: Mapped[int] = mapped_column(Integer, nullable=False)
    line_side_address: Mapped[str | None] = mapped_column(String(20), nullable=True)
    internal_kanban: Mapped[str] = mapped_column(String(INTERNAL_KANBAN_MAX_LENGTH), nullable=False)
    internal_kanban_key: Mapped[str] = mapped_column(String(INTERNAL_KANBAN_MAX_LENGTH), nullable=False)
    internal_kanban_serial: Mapped[str | None] = mapped_column(String(INTERNAL_KANBAN_MAX_LENGTH), nullable=True)
    palletization_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    scanned_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    scanned_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    planned_item: Mapped["PlannedItem"] = relationship(back_populates="scans")

    __table_args__ = (
        UniqueConstraint("order_id", "internal_kanban_key", name="uq_scan_internal_kanban"),
        UniqueConstraint("planned_item_id", "box_number", name="uq_scan_kanban_box"),
        Index("ix_scan_session", "session_id"),
    )


class SkidBuildException(Base):
    __tablename__ = "skid_build_exceptions"

    exception_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.order_id"), nullable=False)
    session_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("scan_sessions.session_id"), nullable=True
    )
    skid_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exception_code: Mapped[str] = mapped_column(String(10), nullable=False)
    comments: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("ix_exception_session", "session_id"),
        Index("ix_exception_order", "order_id"),
    )
