"""
Apply gateway-reported payment statuses to local payments and bookings.

Webhooks (pushed, at-least-once, unordered) and status polls (pulled) both end
up here. Every call for one payment runs under that payment's lock and inside
one database transaction, so duplicate deliveries and concurrent polls
converge: the booking moves at most once per real status change and the
confirmation emails go out only from the call that actually flipped the
payment to SUCCEEDED.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial

from django.db import IntegrityError, transaction

from bookings.models import Booking
from bookings.services import notifications
from bookings.services.availability import lock_queryset_if_possible
from bookings.services.lifecycle import Actor, apply_transition, lock_booking
from core.exceptions import PaymentNotFound
from core.locks import KeyedLock, default_locks
from payments.models import Payment, ProcessedWebhookEvent
from payments.services.statuses import ReportedStatus
from payments.services.webhooks import WebhookEvent

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    APPLIED = "applied"
    NO_CHANGE = "no_change"
    DUPLICATE_EVENT = "duplicate_event"
    PAYMENT_NOT_FOUND = "payment_not_found"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: Outcome
    payment_status: str | None = None
    booking_status: str | None = None
    notifications_scheduled: bool = False
    warning: str = ""

    @property
    def changed(self) -> bool:
        return self.outcome is Outcome.APPLIED


class _DuplicateEvent(Exception):
    pass


class PaymentReconciler:
    def __init__(self, *, notifier, locks: KeyedLock | None = None):
        self.notifier = notifier
        self.locks = locks if locks is not None else default_locks

    def reconcile(
        self,
        *,
        reported_status,
        reference_number: str | None = None,
        external_id: str | None = None,
        event_id: str | None = None,
        provider: str = "",
    ) -> ReconcileResult:
        if not reference_number and not external_id:
            raise ValueError("reference_number or external_id is required")
        correlation_id = reference_number or external_id

        if event_id and ProcessedWebhookEvent.objects.filter(event_id=event_id).exists():
            logger.info("Webhook event %s already processed (%s)", event_id, correlation_id)
            return ReconcileResult(Outcome.DUPLICATE_EVENT)

        try:
            payment_id = self._resolve_payment_id(reference_number, external_id)
        except PaymentNotFound:
            # The event may have raced ahead of local payment creation; a redelivery or poll will catch up.
            logger.warning("Payment not found for %s; nothing reconciled", correlation_id)
            return ReconcileResult(Outcome.PAYMENT_NOT_FOUND, warning="payment_not_found")

        status = ReportedStatus.parse(reported_status)
        if not status.is_recognized:
            logger.warning("Unrecognized payment status %r for %s; ignoring", reported_status, correlation_id)
            return ReconcileResult(Outcome.IGNORED, warning="unrecognized_status")

        with self.locks.hold(("payment", payment_id)):
            try:
                with transaction.atomic():
                    return self._apply(payment_id, status, event_id=event_id, provider=provider)
            except _DuplicateEvent:
                logger.info("Webhook event %s already processed (%s)", event_id, correlation_id)
                return ReconcileResult(Outcome.DUPLICATE_EVENT)

    def reconcile_event(self, event: WebhookEvent) -> ReconcileResult:
        if not event.external_id and not event.reference_number:
            logger.info("%s webhook %s carries no payment id; ignoring", event.provider, event.event_type)
            return ReconcileResult(Outcome.IGNORED, warning="missing_payment_id")
        return self.reconcile(
            reported_status=event.status,
            external_id=event.external_id,
            reference_number=event.reference_number,
            event_id=event.event_id,
            provider=event.provider,
        )

    def _resolve_payment_id(self, reference_number: str | None, external_id: str | None) -> int:
        payment_id = None
        if reference_number:
            payment_id = (
                Payment.objects.filter(reference_number=reference_number).values_list("pk", flat=True).first()
            )
        if payment_id is None and external_id:
            payment_id = (
                Payment.objects.filter(external_id=external_id)
                .order_by("-created_at")
                .values_list("pk", flat=True)
                .first()
            )
        if payment_id is None:
            raise PaymentNotFound(
                "Payment not found.",
                reference_number=reference_number,
                external_id=external_id,
            )
        return payment_id

    def _apply(self, payment_id: int, status: ReportedStatus, *, event_id: str | None, provider: str) -> ReconcileResult:
        payment = lock_queryset_if_possible(Payment.objects.filter(pk=payment_id)).get()

        if event_id:
            try:
                with transaction.atomic():
                    ProcessedWebhookEvent.objects.create(
                        event_id=event_id,
                        provider=provider,
                        payment=payment,
                        reported_status=status.value,
                    )
            except IntegrityError:
                raise _DuplicateEvent(event_id)

        previous = payment.status
        target = status.local_status
        if target == previous or (payment.is_terminal and status is ReportedStatus.PENDING):
            booking_status = Booking.objects.filter(pk=payment.booking_id).values_list("status", flat=True).first()
            logger.info("Payment %s already %s; reported %s is a no-op", payment.reference_number, previous, target)
            return ReconcileResult(Outcome.NO_CHANGE, payment_status=previous, booking_status=booking_status)

        payment.status = target
        payment.save(update_fields=["status", "updated_at"])
        logger.info("Payment %s moved %s -> %s", payment.reference_number, previous, target)

        booking = lock_booking(payment.booking_id)
        scheduled = False
        warning = ""

        if status is ReportedStatus.SUCCEEDED:
            if booking.status == Booking.PENDING:
                apply_transition(booking, Booking.CONFIRMED, actor=Actor.RECONCILER)
                transaction.on_commit(partial(self._send_confirmations, booking.pk), robust=True)
                scheduled = True
            elif booking.is_terminal:
                logger.warning(
                    "Payment %s succeeded but booking %s is already %s; refund review needed",
                    payment.reference_number,
                    booking.pk,
                    booking.status,
                )
                warning = "booking_terminal"
        elif status in (ReportedStatus.FAILED, ReportedStatus.CANCELLED):
            if booking.is_active:
                apply_transition(booking, Booking.CANCELLED, actor=Actor.RECONCILER)
            else:
                logger.info("Booking %s already %s; not re-transitioned", booking.pk, booking.status)

        return ReconcileResult(
            Outcome.APPLIED,
            payment_status=payment.status,
            booking_status=booking.status,
            notifications_scheduled=scheduled,
            warning=warning,
        )

    def _send_confirmations(self, booking_id) -> None:
        for role, kind in (
            (notifications.OWNER, notifications.GUEST_PARKING_NOTICE),
            (notifications.REQUESTER, notifications.BOOKING_CONFIRMED),
        ):
            try:
                self.notifier.notify(role, booking_id, kind)
            except Exception:
                logger.exception("Notification %s to %s failed for booking %s", kind, role, booking_id)
