"""Parse gateway webhook bodies into a small, closed vocabulary."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Mapping

from payments.services.statuses import ReportedStatus

EXPERIA = "experia"
STRIPE = "stripe"


@dataclass(frozen=True)
class WebhookEvent:
    provider: str
    event_type: str
    status: ReportedStatus
    event_id: str | None = None
    external_id: str | None = None
    reference_number: str | None = None
    raw_status: str = ""

    @property
    def correlation_id(self) -> str:
        return self.external_id or self.reference_number or self.event_id or "unknown"


def verify_experia_signature(body: bytes, signature: str | None, secret: str) -> bool:
    if not signature or not secret:
        return False
    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature)


def parse_experia_event(payload: Mapping[str, Any]) -> WebhookEvent:
    data = payload.get("data") or {}
    event_type = str(payload.get("event") or "")
    raw_status = str(data.get("status") or "")

    if event_type == "payment.completed":
        status = ReportedStatus.parse(raw_status)
    elif event_type == "payment.failed":
        status = ReportedStatus.FAILED
    elif event_type == "payment.cancelled":
        status = ReportedStatus.CANCELLED
    else:
        status = ReportedStatus.UNRECOGNIZED

    reference_number = data.get("fullOrderRef") or data.get("referenceNumber")
    event_id = payload.get("id") or data.get("transactionId")
    if not event_id and reference_number:
        # Redeliveries of the same notification collapse; distinct notifications do not.
        event_id = f"{reference_number}:{event_type}:{raw_status or status.value}"

    return WebhookEvent(
        provider=EXPERIA,
        event_type=event_type,
        status=status,
        event_id=event_id or None,
        external_id=data.get("externalId") or None,
        reference_number=reference_number or None,
        raw_status=raw_status,
    )


def _stripe_session_status(event_type: str, session: Mapping[str, Any]) -> ReportedStatus:
    if event_type == "checkout.session.completed":
        if session.get("payment_status") in ("paid", "no_payment_required"):
            return ReportedStatus.SUCCEEDED
        # Delayed payment methods settle later through async_payment_* events.
        return ReportedStatus.PENDING
    if event_type == "checkout.session.async_payment_succeeded":
        return ReportedStatus.SUCCEEDED
    if event_type == "checkout.session.async_payment_failed":
        return ReportedStatus.FAILED
    if event_type == "checkout.session.expired":
        return ReportedStatus.CANCELLED
    return ReportedStatus.UNRECOGNIZED


def parse_stripe_event(event: Mapping[str, Any]) -> WebhookEvent:
    event_type = str(event.get("type") or "")
    session = (event.get("data") or {}).get("object") or {}
    return WebhookEvent(
        provider=STRIPE,
        event_type=event_type,
        status=_stripe_session_status(event_type, session),
        event_id=event.get("id") or None,
        external_id=session.get("id") or None,
        reference_number=session.get("id") or None,
        raw_status=str(session.get("payment_status") or session.get("status") or ""),
    )
