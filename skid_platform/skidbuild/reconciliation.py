from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from skidbuild.records import EXCEPTION_COMMENT_MAX_LENGTH, ExceptionCode, PlannedLineItem


class ReconciliationBlockedError(Exception):
    def __init__(self, planned_quantity: int, actual_quantity: int):
        super().__init__(
            f"Planned quantity {planned_quantity} does not match scanned quantity "
            f"{actual_quantity}; record an exception before submitting"
        )
        self.planned_quantity = planned_quantity
        self.actual_quantity = actual_quantity


@dataclass(frozen=True)
class ReconciliationSummary:
    planned_quantity: int
    actual_quantity: int
    exception_count: int

    @property
    def difference(self) -> int:
        return self.actual_quantity - self.planned_quantity

    @property
    def exception_required(self) -> bool:
        return self.planned_quantity != self.actual_quantity

    @property
    def can_submit(self) -> bool:
        return not self.exception_required or self.exception_count > 0


def summarize(items: Iterable[PlannedLineItem], exception_count: int) -> ReconciliationSummary:
    """Order-wide totals: every planned line, not only the current skid.

    The actual quantity counts committed boxes (scan details), which differs
    from the number of kanban cards read when a primary scan is cancelled.
    """
    planned = 0
    actual = 0
    for item in items:
        planned += item.planned_quantity
        actual += item.scanned_quantity
    return ReconciliationSummary(
        planned_quantity=planned,
        actual_quantity=actual,
        exception_count=exception_count,
    )


def ensure_submittable(summary: ReconciliationSummary) -> None:
    if not summary.can_submit:
        raise ReconciliationBlockedError(summary.planned_quantity, summary.actual_quantity)


class InvalidExceptionError(ValueError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


def validate_exception(code: str | ExceptionCode, comment: str | None) -> tuple[ExceptionCode, str]:
    try:
        exception_code = ExceptionCode(code)
    except ValueError:
        allowed = ", ".join(c.value for c in ExceptionCode)
        raise InvalidExceptionError("code", f"Unknown exception code {code!r}; expected one of {allowed}")

    text = (comment or "").strip()
    if not text:
        raise InvalidExceptionError("comment", "Exception comment is required")
    if len(text) > EXCEPTION_COMMENT_MAX_LENGTH:
        raise InvalidExceptionError(
            "comment",
            f"Exception comment must be at most {EXCEPTION_COMMENT_MAX_LENGTH} characters",
        )
    return exception_code, text
