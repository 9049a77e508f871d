from skidbuild.payloads import KanbanItem, Skid, SkidBuildRequest, dump
from skidbuild.plugins.base import SubmissionContext, SubmissionPlugin, customer_exceptions, skid_scans
from skidbuild.records import Channel


class SkidBuildPlugin(SubmissionPlugin):
    @property
    def channel(self) -> str:
        return Channel.SKID_BUILD.value

    @property
    def endpoint(self) -> str:
        return "skid"

    def build_payload(self, context: SubmissionContext) -> list[dict]:
        items = {item.planned_item_id: item for item in context.items}
        skids = []
        for (skid_id, palletization), scans in skid_scans(context.items):
            kanbans = []
            for scan in sorted(scans, key=lambda s: s.box_number):
                item = items[scan.planned_item_id]
                kanbans.append(
                    KanbanItem(
                        line_side_address=scan.line_side_address,
                        part_number=item.part_number,
                        kanban=item.kanban_number,
                        qpc=item.qpc,
                        box_number=scan.box_number,
                        manifest_number=item.manifest_no or None,
                    )
                )
            skids.append(Skid(palletization=palletization, skid_id=skid_id, kanbans=kanbans))

        order = context.order
        request = SkidBuildRequest(
            order=order.order_number,
            supplier=order.supplier_code,
            plant=order.plant_code,
            dock=order.dock_code,
            exceptions=customer_exceptions(context.exceptions),
            skids=skids,
        )
        # One request per order; the endpoint accepts a batch.
        return [dump(request)]
