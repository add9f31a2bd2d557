from __future__ import annotations

from enum import Enum

from payments.models import Payment


class ReportedStatus(str, Enum):
    """Payment status as reported by a gateway, including anything we do not know."""

    PENDING = Payment.PENDING
    SUCCEEDED = Payment.SUCCEEDED
    FAILED = Payment.FAILED
    CANCELLED = Payment.CANCELLED
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, raw) -> "ReportedStatus":
        if isinstance(raw, ReportedStatus):
            return raw
        normalized = str(raw or "").strip().upper()
        normalized = _ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNRECOGNIZED

    @property
    def is_recognized(self) -> bool:
        return self is not ReportedStatus.UNRECOGNIZED

    @property
    def is_terminal(self) -> bool:
        return self in (ReportedStatus.SUCCEEDED, ReportedStatus.FAILED, ReportedStatus.CANCELLED)

    @property
    def local_status(self) -> str:
        if not self.is_recognized:
            raise ValueError("Unrecognized statuses have no local equivalent.")
        return self.value


_ALIASES = {
    "CANCELED": ReportedStatus.CANCELLED.value,
    "SUCCESS": ReportedStatus.SUCCEEDED.value,
    "PAID": ReportedStatus.SUCCEEDED.value,
}
