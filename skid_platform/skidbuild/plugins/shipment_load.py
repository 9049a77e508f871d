from datetime import datetime, timezone

from pydantic import BaseModel, ValidationError

from skidbuild.payloads import ShipmentLoadRequest, ShipmentOrder, ShipmentSkid, dump
from skidbuild.plugins.base import (
    SubmissionContext,
    SubmissionDetailsError,
    SubmissionPlugin,
    customer_exceptions,
    skid_scans,
)
from skidbuild.records import Channel

PICK_UP_FORMAT = "%Y-%m-%dT%H:%M"


class ShipmentLoadDetails(BaseModel):
    trailer_number: str
    route_number: str | None = None
    run: str | None = None
    seal_number: str | None = None
    lp_code: str | None = None
    pick_up: datetime | None = None
    driver_first_name: str | None = None
    driver_last_name: str | None = None
    supplier_first_name: str | None = None
    supplier_last_name: str | None = None


def split_route_run(route_number: str) -> tuple[str, str]:
    """Split "ABC1203" into ("ABC12", "03"); the run is the last two characters."""
    if len(route_number) < 2:
        return route_number, ""
    return route_number[:-2], route_number[-2:]


class ShipmentLoadPlugin(SubmissionPlugin):
    @property
    def channel(self) -> str:
        return Channel.SHIPMENT_LOAD.value

    @property
    def endpoint(self) -> str:
        return "trailer"

    def build_payload(self, context: SubmissionContext) -> dict:
        try:
            details = ShipmentLoadDetails.model_validate(context.details)
        except ValidationError as exc:
            raise SubmissionDetailsError(self.channel, str(exc)) from exc

        order = context.order
        route_number = details.route_number or order.route
        if not route_number:
            raise SubmissionDetailsError(self.channel, "a route number is required")
        route, run = split_route_run(route_number)

        trailer_level = [e for e in context.exceptions if e.skid_number is None]
        skids = []
        seen: set[tuple[str, str]] = set()
        for (_, palletization), scans in skid_scans(context.items):
            # The trailer endpoint identifies skids by their numeric part only,
            # so both sides of a skid collapse into one entry.
            skid_number = scans[0].skid_number
            if (skid_number, palletization) in seen:
                continue
            seen.add((skid_number, palletization))
            scoped = [e for e in context.exceptions if e.skid_number == int(skid_number)]
            skids.append(
                ShipmentSkid(
                    palletization=palletization,
                    skid_id=skid_number,
                    exceptions=customer_exceptions(scoped),
                )
            )

        pick_up = details.pick_up or datetime.now(timezone.utc)
        request = ShipmentLoadRequest(
            supplier=order.supplier_code,
            route=route,
            run=details.run or run,
            trailer_number=details.trailer_number,
            # Drivers always stay with the trailer.
            drop_hook=False,
            seal_number=details.seal_number,
            lp_code=details.lp_code,
            driver_team_first_name=details.driver_first_name,
            driver_team_last_name=details.driver_last_name,
            supplier_team_first_name=details.supplier_first_name,
            supplier_team_last_name=details.supplier_last_name,
            exceptions=customer_exceptions(trailer_level),
            orders=[
                ShipmentOrder(
                    order=order.order_number,
                    supplier=order.supplier_code,
                    plant=order.plant_code,
                    dock=order.dock_code,
                    pick_up=pick_up.strftime(PICK_UP_FORMAT),
                    skids=skids,
                )
            ],
        )
        return dump(request)
