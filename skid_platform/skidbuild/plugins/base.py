from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any

from skidbuild.payloads import CustomerException
from skidbuild.records import ExceptionRecord, OrderHeader, PlannedLineItem, ScanDetail


class SubmissionDetailsError(ValueError):
    def __init__(self, channel: str, message: str):
        super().__init__(f"Invalid {channel} submission details: {message}")
        self.channel = channel


@dataclass
class SubmissionContext:
    order: OrderHeader
    items: list[PlannedLineItem]
    exceptions: list[ExceptionRecord]
    details: dict = field(default_factory=dict)


def skid_scans(items: list[PlannedLineItem]) -> list[tuple[tuple[str, str], list[ScanDetail]]]:
    """Committed scans grouped per physical skid ((skid id, palletization)), sorted."""
    scans = [detail for item in items for detail in item.scan_details]

    def key(detail: ScanDetail) -> tuple[str, str]:
        return (detail.skid_number + detail.skid_side, detail.palletization_code)

    return [(k, list(group)) for k, group in groupby(sorted(scans, key=key), key=key)]


def customer_exceptions(records: list[ExceptionRecord]) -> list[CustomerException] | None:
    converted = [CustomerException(exception_code=r.code.value, comments=r.comment) for r in records]
    return converted or None


class SubmissionPlugin(ABC):
    @property
    @abstractmethod
    def channel(self) -> str:
        ...

    @property
    @abstractmethod
    def endpoint(self) -> str:
        ...

    @abstractmethod
    def build_payload(self, context: SubmissionContext) -> Any:
        ...
