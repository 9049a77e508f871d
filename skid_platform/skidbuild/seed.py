import logging
from typing import Dict

from skidbuild.db import build_session_factory
from skidbuild.models import Base, Order, PlannedItem

logger = logging.getLogger(__name__)

# Matches the manifest label "02TMI02806V82023080205  IDVV01      LB05001B".
DEMO_ORDERS = [
    dict(
        order_number="2023080205",
        dock_code="V8",
        supplier_code="02806",
        plant_code="02TMI",
        route="IDVV01",
        items=[
            # part, kanban, qpc, planned boxes, palletization, skid
            ("681010E250", "FCJR", 10, 2, "LB", "001B"),
            ("6810202110", "FCJS", 8, 1, "LB", "001B"),
            ("627300820100", "FA12", 4, 2, "LB", "001A"),
        ],
    ),
    dict(
        order_number="2023080206",
        dock_code="V8",
        supplier_code="02806",
        plant_code="02TMI",
        route="IDVV01",
        items=[
            ("681010E250", "FCJR", 10, 1, "D1", "002A"),
        ],
    ),
]


def run_seed(engine) -> Dict[str, int]:
    """Run idempotent seed using given engine. Returns counts of inserted rows."""
    Base.metadata.create_all(bind=engine)
    SessionFactory = build_session_factory(engine)
    counts: Dict[str, int] = {"orders": 0, "planned_items": 0}

    with SessionFactory() as session:
        for spec in DEMO_ORDERS:
            existing = (
                session.query(Order)
                .filter_by(order_number=spec["order_number"], dock_code=spec["dock_code"])
                .first()
            )
            if existing:
                continue
            order = Order(
                order_number=spec["order_number"],
                dock_code=spec["dock_code"],
                supplier_code=spec["supplier_code"],
                plant_code=spec["plant_code"],
                route=spec["route"],
            )
            session.add(order)
            session.flush()
            counts["orders"] += 1

            for part, kanban, qpc, boxes, palletization, skid in spec["items"]:
                session.add(
                    PlannedItem(
                        order_id=order.order_id,
                        part_number=part,
                        kanban_number=kanban,
                        qpc=qpc,
                        planned_quantity=boxes,
                        manifest_no=spec["order_number"],
                        palletization_code=palletization,
                        skid_id=skid,
                    )
                )
                counts["planned_items"] += 1

        session.commit()

    logger.info("Seed complete: %s", counts)
    return counts


if __name__ == "__main__":
    from skidbuild.db import build_engine, load_db_config
    from skidbuild.logging_setup import setup_logging

    setup_logging()
    print(run_seed(build_engine(load_db_config())))
