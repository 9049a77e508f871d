from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

from skidbuild.decoding import ManifestScan
from skidbuild.records import OrderHeader, PlannedLineItem


class SkidKey(NamedTuple):
    palletization_code: str
    raw_skid_id: str

    def label(self) -> str:
        return f"{self.palletization_code}-{self.raw_skid_id}"


def skid_key(palletization_code: str | None, raw_skid_id: str | None) -> SkidKey:
    return SkidKey(
        (palletization_code or "").strip().upper(),
        (raw_skid_id or "").strip().upper(),
    )


@dataclass
class SkidGroup:
    key: SkidKey
    planned: list[PlannedLineItem] = field(default_factory=list)

    @property
    def palletization_code(self) -> str:
        return self.key.palletization_code

    @property
    def raw_skid_id(self) -> str:
        return self.key.raw_skid_id

    @property
    def planned_quantity(self) -> int:
        return sum(item.planned_quantity for item in self.planned)

    @property
    def scanned_quantity(self) -> int:
        return sum(item.scanned_quantity for item in self.planned)


class UnknownSkidError(KeyError):
    def __init__(self, key: SkidKey, order_number: str):
        super().__init__(f"Skid {key.label()} is not planned on order {order_number}")
        self.key = key
        self.order_number = order_number


class PlannedIndex:
    """An order's planned baseline partitioned into physical skids.

    The baseline is loaded once; later manifest scans only move the
    ``current`` cursor between groups.
    """

    def __init__(self, order: OrderHeader, items: Iterable[PlannedLineItem]):
        self.order = order
        self.items: list[PlannedLineItem] = list(items)
        self.groups: dict[SkidKey, SkidGroup] = {}
        for item in self.items:
            key = skid_key(item.palletization_code, item.skid_id)
            self.groups.setdefault(key, SkidGroup(key=key)).planned.append(item)
        self._current: SkidKey | None = None

    @property
    def current(self) -> SkidGroup | None:
        if self._current is None:
            return None
        return self.groups[self._current]

    def select(self, manifest: ManifestScan) -> SkidGroup:
        return self.select_key(skid_key(manifest.palletization_code, manifest.raw_skid_id))

    def select_key(self, key: SkidKey) -> SkidGroup:
        if key not in self.groups:
            raise UnknownSkidError(key, self.order.order_number)
        self._current = key
        return self.groups[key]

    def item(self, planned_item_id: int) -> PlannedLineItem:
        for item in self.items:
            if item.planned_item_id == planned_item_id:
                return item
        raise KeyError(planned_item_id)

    def clear_scans(self) -> None:
        for item in self.items:
            item.scan_details.clear()

    @property
    def planned_quantity(self) -> int:
        return sum(item.planned_quantity for item in self.items)

    @property
    def scanned_quantity(self) -> int:
        return sum(item.scanned_quantity for item in self.items)
