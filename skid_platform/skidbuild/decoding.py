"""Fixed-position decoding of the three scan formats used on the skid build floor.

Manifest labels and Toyota kanban QR codes are positional: every field lives
at a fixed character offset, and blank positions are space padded. Offsets are
declared once per format as a layout table and read by ``extract_fields``.
The internal kanban label is the only delimited format.

All decoders are pure: the same raw string always produces the same record or
the same ``StructuralDecodeError``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

MANIFEST = "manifest"
KANBAN = "kanban"
INTERNAL_KANBAN = "internal_kanban"

MANIFEST_MIN_LENGTH = 44
MANIFEST_MAX_LENGTH = 64
KANBAN_MIN_LENGTH = 200
INTERNAL_KANBAN_DELIMITER = "/"
INTERNAL_KANBAN_MAX_LENGTH = 100

BOX_NUMBER_MIN = 1
BOX_NUMBER_MAX = 999

_SKID_NUMBER_RE = re.compile(r"^\d{3}$")
_SKID_SIDES = ("A", "B")


class StructuralDecodeError(Exception):
    def __init__(self, kind: str, reason: str, raw: str):
        super().__init__(f"Invalid {kind} scan: {reason}")
        self.kind = kind
        self.reason = reason
        self.raw = raw


@dataclass(frozen=True)
class FieldSpec:
    name: str
    start: int
    end: int
    strip: bool = True

    def read(self, raw: str) -> str:
        value = raw[self.start:self.end]
        return value.strip() if self.strip else value


# Sample: "02TMI02806V82023080205  IDVV01      LB05001B"
MANIFEST_LAYOUT: tuple[FieldSpec, ...] = (
    FieldSpec("plant_prefix", 0, 5),
    FieldSpec("supplier_code", 5, 10),
    FieldSpec("dock_code", 10, 12),
    FieldSpec("order_number", 12, 24),
    FieldSpec("load_id", 24, 36),
    FieldSpec("palletization_code", 36, 38),
    FieldSpec("mros", 38, 40),
    FieldSpec("raw_skid_id", 40, 44, strip=False),
)

# Position 0 carries a format marker ("C") and is not part of any field.
KANBAN_LAYOUT: tuple[FieldSpec, ...] = (
    FieldSpec("description", 1, 12),
    FieldSpec("part_number_primary", 12, 22),
    FieldSpec("supplier_code", 31, 36),
    FieldSpec("dock_code", 36, 38),
    FieldSpec("kanban_number", 38, 42),
    FieldSpec("part_number_repeat", 42, 54),
    FieldSpec("line_side_address", 54, 64),
    FieldSpec("store_address", 64, 74),
    FieldSpec("quantity", 74, 79),
    FieldSpec("supplier_name", 79, 99),
    FieldSpec("load_id", 99, 108),
    FieldSpec("load_id_2", 108, 117),
    FieldSpec("plan_unload_date", 117, 125),
    FieldSpec("ship_date", 125, 133),
    FieldSpec("ship_time", 133, 137),
    FieldSpec("control_code", 137, 139),
    FieldSpec("delivery_order", 139, 149),
    FieldSpec("box_number", 151, 155),
    FieldSpec("total_boxes", 155, 159),
    FieldSpec("plant_code", 159, 164),
    FieldSpec("route", 183, 192),
    FieldSpec("container_type", 193, 195),
    FieldSpec("pallet_code", 195, 197),
    FieldSpec("control_field", 197, 202),
    FieldSpec("status", 207, 208),
    FieldSpec("zone_area", 209, 211),
)


@dataclass(frozen=True)
class ManifestScan:
    plant_prefix: str
    supplier_code: str
    dock_code: str
    order_number: str
    load_id: str
    palletization_code: str
    mros: str
    raw_skid_id: str
    raw: str

    @property
    def skid_number(self) -> str:
        return self.raw_skid_id[:3]

    @property
    def skid_side(self) -> str:
        return self.raw_skid_id[3:4]


@dataclass(frozen=True)
class KanbanScan:
    part_number: str
    part_number_primary: str
    part_number_repeat: str
    description: str
    supplier_code: str
    supplier_name: str
    dock_code: str
    kanban_number: str
    line_side_address: str
    store_address: str
    quantity: int
    load_id: str
    load_id_2: str
    plan_unload_date: str
    ship_date: str
    ship_time: str
    control_code: str
    delivery_order: str
    box_number: int
    total_boxes: int
    plant_code: str
    route: str
    container_type: str
    pallet_code: str
    control_field: str
    status: str
    zone_area: str
    raw: str

    @property
    def part_numbers(self) -> tuple[str, ...]:
        """Distinct non-empty part number readings, most reliable first."""
        seen: list[str] = []
        for value in (self.part_number, self.part_number_primary):
            if value and value not in seen:
                seen.append(value)
        return tuple(seen)


@dataclass(frozen=True)
class InternalKanbanScan:
    """``raw`` is the whole label; it is what identifies a physical box."""

    toyota_kanban: str
    internal_kanban: str
    serial_number: str
    raw: str


def extract_fields(raw: str, layout: Iterable[FieldSpec]) -> dict[str, str]:
    return {spec.name: spec.read(raw) for spec in layout}


def _normalize_raw(raw: str | None) -> str:
    # Wedge scanners terminate each read with CR/LF.
    return (raw or "").rstrip("\r\n")


def _lenient_int(value: str) -> int:
    return int(value) if value.isdigit() else 0


def decode_manifest(raw: str) -> ManifestScan:
    value = _normalize_raw(raw)
    if len(value) < MANIFEST_MIN_LENGTH:
        raise StructuralDecodeError(
            MANIFEST, f"expected at least {MANIFEST_MIN_LENGTH} characters, got {len(value)}", value
        )
    if len(value) > MANIFEST_MAX_LENGTH:
        raise StructuralDecodeError(
            MANIFEST, f"expected at most {MANIFEST_MAX_LENGTH} characters, got {len(value)}", value
        )

    fields = extract_fields(value, MANIFEST_LAYOUT)
    missing = [
        name
        for name in ("plant_prefix", "supplier_code", "dock_code", "order_number")
        if not fields[name]
    ]
    if missing:
        raise StructuralDecodeError(MANIFEST, f"missing required fields: {', '.join(missing)}", value)

    raw_skid_id = fields["raw_skid_id"]
    skid_number, skid_side = raw_skid_id[:3], raw_skid_id[3:]
    if not _SKID_NUMBER_RE.match(skid_number):
        raise StructuralDecodeError(
            MANIFEST, f"skid number must be 3 digits, got {skid_number!r}", value
        )
    if skid_side not in _SKID_SIDES:
        raise StructuralDecodeError(MANIFEST, f"skid side must be A or B, got {skid_side!r}", value)

    return ManifestScan(raw=value, **fields)


def decode_kanban(raw: str) -> KanbanScan:
    value = _normalize_raw(raw)
    if len(value) < KANBAN_MIN_LENGTH:
        raise StructuralDecodeError(
            KANBAN, f"expected at least {KANBAN_MIN_LENGTH} characters, got {len(value)}", value
        )

    fields = extract_fields(value, KANBAN_LAYOUT)

    # The repeated part number is consistent across label variants; the
    # primary field is truncated on some of them.
    effective_part = fields["part_number_repeat"] or fields["part_number_primary"]
    missing = [
        name
        for name, field_value in (
            ("part_number", effective_part),
            ("supplier_code", fields["supplier_code"]),
            ("dock_code", fields["dock_code"]),
        )
        if not field_value
    ]
    if missing:
        raise StructuralDecodeError(KANBAN, f"missing required fields: {', '.join(missing)}", value)

    box_number = fields.pop("box_number")
    if not box_number.isdigit() or not BOX_NUMBER_MIN <= int(box_number) <= BOX_NUMBER_MAX:
        raise StructuralDecodeError(
            KANBAN, f"box number must be {BOX_NUMBER_MIN}-{BOX_NUMBER_MAX}, got {box_number!r}", value
        )

    return KanbanScan(
        part_number=effective_part,
        quantity=_lenient_int(fields.pop("quantity")),
        total_boxes=_lenient_int(fields.pop("total_boxes")),
        box_number=int(box_number),
        raw=value,
        **fields,
    )


def decode_internal_kanban(raw: str) -> InternalKanbanScan:
    value = _normalize_raw(raw).strip()
    if len(value) > INTERNAL_KANBAN_MAX_LENGTH:
        raise StructuralDecodeError(
            INTERNAL_KANBAN,
            f"expected at most {INTERNAL_KANBAN_MAX_LENGTH} characters, got {len(value)}",
            value,
        )
    parts = value.split(INTERNAL_KANBAN_DELIMITER)
    if len(parts) != 3:
        raise StructuralDecodeError(
            INTERNAL_KANBAN, f"expected PART/KANBAN/SERIAL, got {len(parts)} segment(s)", value
        )

    toyota_kanban, internal_kanban, serial_number = (p.strip() for p in parts)
    if not toyota_kanban or not internal_kanban or not serial_number:
        raise StructuralDecodeError(INTERNAL_KANBAN, "all three segments must be non-empty", value)

    return InternalKanbanScan(
        toyota_kanban=toyota_kanban,
        internal_kanban=internal_kanban,
        serial_number=serial_number,
        raw=value,
    )


__all__ = [
    "FieldSpec",
    "InternalKanbanScan",
    "KanbanScan",
    "INTERNAL_KANBAN_MAX_LENGTH",
    "KANBAN_LAYOUT",
    "MANIFEST_LAYOUT",
    "MANIFEST_MAX_LENGTH",
    "ManifestScan",
    "StructuralDecodeError",
    "decode_internal_kanban",
    "decode_kanban",
    "decode_manifest",
    "extract_fields",
]
