"""Matching decoded kanbans against the current skid and guarding duplicates.

Part numbers on the label and on the planned baseline do not always agree in
length (the repeated label field carries a 2-digit suffix), so a match is
tried in two passes: exact equality first, then containment in either
direction. Within a pass the first candidate in baseline order wins.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from skidbuild.decoding import InternalKanbanScan, KanbanScan
from skidbuild.planned_index import SkidGroup
from skidbuild.records import PlannedLineItem, ScanDetail

logger = logging.getLogger(__name__)


class MatchError(Exception):
    def __init__(self, message: str, part_number: str | None = None, skid: str | None = None):
        super().__init__(message)
        self.part_number = part_number
        self.skid = skid


class PalletizationMismatchError(Exception):
    def __init__(self, manifest_code: str, kanban_code: str):
        super().__init__(
            f"Palletization code mismatch. Manifest: {manifest_code!r}, Kanban: {kanban_code!r}"
        )
        self.manifest_code = manifest_code
        self.kanban_code = kanban_code


class DuplicateScanError(Exception):
    INTERNAL_KANBAN = "internal_kanban"
    TOYOTA_KANBAN = "toyota_kanban"

    def __init__(self, rule: str, message: str):
        super().__init__(message)
        self.rule = rule


def normalize_part_number(value: str | None) -> str:
    return "".join((value or "").split()).replace("-", "").upper()


def _exact(planned: str, scanned: str) -> bool:
    return planned == scanned


def _contains(planned: str, scanned: str) -> bool:
    return planned in scanned or scanned in planned


MATCH_RULES: tuple[tuple[str, Callable[[str, str], bool]], ...] = (
    ("exact", _exact),
    ("containment", _contains),
)


def match_kanban(kanban: KanbanScan, group: SkidGroup | None) -> PlannedLineItem:
    if group is None:
        raise MatchError("Scan a manifest first to open a skid", kanban.part_number)

    scanned = [normalize_part_number(p) for p in kanban.part_numbers]
    scanned = [p for p in scanned if p]
    candidates = [
        item
        for item in group.planned
        if normalize_part_number(item.part_number)
        and item.palletization_code.strip().upper() == group.palletization_code
    ]

    for rule_name, rule in MATCH_RULES:
        for item in candidates:
            planned = normalize_part_number(item.part_number)
            if any(rule(planned, s) for s in scanned):
                logger.debug(
                    "Kanban %s matched planned item %s by %s rule",
                    kanban.part_number, item.planned_item_id, rule_name,
                )
                return item

    raise MatchError(
        f"Kanban part {kanban.part_number} does not belong to skid {group.key.label()}",
        part_number=kanban.part_number,
        skid=group.key.label(),
    )


def validate_palletization(manifest_code: str | None, kanban_code: str | None) -> bool:
    manifest = (manifest_code or "").strip().upper()
    kanban = (kanban_code or "").strip().upper()
    if not manifest or not kanban:
        return True
    return manifest == kanban


def ensure_palletization(manifest_code: str | None, kanban_code: str | None) -> None:
    if not validate_palletization(manifest_code, kanban_code):
        raise PalletizationMismatchError(manifest_code or "", kanban_code or "")


def internal_kanban_key(value: str) -> str:
    return value.strip().upper()


class DuplicateGuard:
    """Order-scoped uniqueness of internal kanbans and kanban boxes."""

    def __init__(self, details: Iterable[ScanDetail] = ()):
        self._internal: set[str] = set()
        self._boxes: set[tuple[int, int]] = set()
        for detail in details:
            self.record(detail)

    def record(self, detail: ScanDetail) -> None:
        self._internal.add(internal_kanban_key(detail.internal_kanban))
        self._boxes.add((detail.planned_item_id, detail.box_number))

    def clear(self) -> None:
        self._internal.clear()
        self._boxes.clear()

    def check_internal_kanban(self, internal_kanban: str) -> None:
        if internal_kanban_key(internal_kanban) in self._internal:
            raise DuplicateScanError(
                DuplicateScanError.INTERNAL_KANBAN,
                f"Internal Kanban {internal_kanban} has already been scanned for this order",
            )

    def check_kanban_box(self, planned_item_id: int, box_number: int) -> None:
        if (planned_item_id, box_number) in self._boxes:
            raise DuplicateScanError(
                DuplicateScanError.TOYOTA_KANBAN,
                f"Kanban box {box_number} for this part has already been scanned for this order",
            )


def ensure_internal_kanban_pairs(internal: InternalKanbanScan, item: PlannedLineItem) -> None:
    """The secondary label must carry the matched line's part and kanban code."""
    if normalize_part_number(internal.toyota_kanban) != normalize_part_number(item.part_number):
        raise MatchError(
            f"Internal Kanban part {internal.toyota_kanban} does not match "
            f"Toyota Kanban part {item.part_number}",
            part_number=internal.toyota_kanban,
        )
    planned_code = (item.kanban_number or "").strip().upper()
    if planned_code and planned_code != internal.internal_kanban.strip().upper():
        raise MatchError(
            f"Internal Kanban code {internal.internal_kanban} does not match "
            f"Toyota Kanban code {item.kanban_number}",
            part_number=item.part_number,
        )
