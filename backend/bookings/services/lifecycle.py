"""
Booking state machine.

PENDING is the only entry state. The requester may cancel while PENDING; the
payment reconciler confirms on a successful payment and cancels on a failed or
cancelled one; the system completes confirmed bookings whose interval has
elapsed. CANCELLED and COMPLETED are terminal.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from datetime import datetime
from decimal import ROUND_CEILING, Decimal
from typing import Callable

from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services.availability import (
    lock_queryset_if_possible,
    has_conflict,
    spot_reservation,
)
from core.exceptions import (
    BookingValidationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
)
from core.locks import KeyedLock, default_locks
from parking.services.directory import ResourceDirectory
from payments.models import Payment

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)

BOOKING_DETAIL_FIELDS = (
    "notes",
    "vehicle_plate_number",
    "vehicle_model",
    "vehicle_color",
    "tower",
    "unit_number",
)


class Actor:
    REQUESTER = "requester"
    RECONCILER = "reconciler"
    SYSTEM = "system"


ALLOWED_TRANSITIONS = {
    (Booking.PENDING, Booking.CANCELLED): {Actor.REQUESTER, Actor.RECONCILER},
    (Booking.PENDING, Booking.CONFIRMED): {Actor.RECONCILER},
    (Booking.CONFIRMED, Booking.CANCELLED): {Actor.RECONCILER},
    (Booking.CONFIRMED, Booking.COMPLETED): {Actor.SYSTEM},
}


def ceil_to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_CEILING)


def calculate_total_price(start: datetime, end: datetime, price_per_hour) -> Decimal:
    delta = end - start
    microseconds = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    hours = Decimal(microseconds) / MICROSECONDS_PER_HOUR
    return ceil_to_cents(hours * Decimal(price_per_hour))


def ensure_transition(booking: Booking, target: str, *, actor: str) -> None:
    current = booking.status
    if current in Booking.TERMINAL_STATUSES:
        raise InvalidStateTransition(current, target, f"Booking is already {current.lower()}.")
    if actor not in ALLOWED_TRANSITIONS.get((current, target), set()):
        raise InvalidStateTransition(current, target)


def apply_transition(booking: Booking, target: str, *, actor: str) -> Booking:
    ensure_transition(booking, target, actor=actor)
    previous = booking.status
    booking.status = target
    booking.save(update_fields=["status", "updated_at"])
    logger.info("Booking %s moved %s -> %s by %s", booking.pk, previous, target, actor)
    return booking


def lock_booking(booking_id) -> Booking:
    queryset = lock_queryset_if_possible(Booking.objects.filter(pk=booking_id))
    booking = queryset.first()
    if booking is None:
        raise NotFoundError("Booking not found.", booking_id=booking_id)
    return booking


def _payment_id_for(booking_id):
    return Payment.objects.filter(booking_id=booking_id).values_list("pk", flat=True).first()


class _PaymentAppeared(Exception):
    def __init__(self, payment_id):
        super().__init__(payment_id)
        self.payment_id = payment_id


class BookingLifecycle:
    def __init__(
        self,
        *,
        directory: ResourceDirectory | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.directory = directory or ResourceDirectory()
        self.locks = locks if locks is not None else default_locks
        self.clock = clock

    def create_booking(self, *, requester, spot_id, start: datetime, end: datetime, **details) -> Booking:
        if start >= end:
            raise BookingValidationError("End time must be after start time.")
        if start < self.clock():
            raise BookingValidationError("Start time must be in the future.")

        unknown = set(details) - set(BOOKING_DETAIL_FIELDS)
        if unknown:
            raise TypeError(f"Unexpected booking fields: {', '.join(sorted(unknown))}")

        with spot_reservation(spot_id, self.locks):
            spot = self.directory.get_resource(spot_id)
            if not spot.is_bookable:
                raise BookingValidationError("Parking spot is not available for booking.")
            if spot.owner_id == requester.pk:
                raise BookingValidationError("You cannot book your own parking spot.")
            if has_conflict(spot.id, start, end):
                raise ConflictError("This time slot is already booked.", spot_id=spot.id)

            booking = Booking.objects.create(
                spot_id=spot.id,
                requester=requester,
                start=start,
                end=end,
                total_price=calculate_total_price(start, end, spot.price_per_hour),
                status=Booking.PENDING,
                **{field: value or "" for field, value in details.items()},
            )

        logger.info(
            "Booking %s created for spot %s (%s - %s), total %s",
            booking.pk,
            spot.id,
            start.isoformat(),
            end.isoformat(),
            booking.total_price,
        )
        return booking

    def get_booking_for_user(self, booking_id, user) -> Booking:
        """Requesters and spot owners may see a booking; everyone else gets not found."""
        booking = (
            Booking.objects.select_related("spot", "spot__owner", "requester")
            .filter(pk=booking_id)
            .first()
        )
        if booking is None or user.pk not in (booking.requester_id, booking.spot.owner_id):
            raise NotFoundError("Booking not found.", booking_id=booking_id)
        return booking

    def cancel_booking(self, booking_id, requester) -> Booking:
        """Cancel a PENDING booking and its PENDING payment in one transaction."""
        payment_id = _payment_id_for(booking_id)
        while True:
            try:
                return self._cancel(booking_id, requester, payment_id)
            except _PaymentAppeared as exc:
                # A payment was recorded while we waited on the booking row; retry holding its lock.
                logger.info("Payment %s appeared for booking %s during cancel; retrying", exc.payment_id, booking_id)
                payment_id = exc.payment_id

    def _cancel(self, booking_id, requester, payment_id) -> Booking:
        payment_lock = self.locks.hold(("payment", payment_id)) if payment_id else nullcontext()

        # Payment row before booking row, same order as the reconciler.
        with payment_lock, transaction.atomic():
            payment = None
            if payment_id:
                payment = lock_queryset_if_possible(Payment.objects.filter(pk=payment_id)).first()
            booking = lock_booking(booking_id)

            current_payment_id = _payment_id_for(booking.pk)
            if current_payment_id != payment_id:
                raise _PaymentAppeared(current_payment_id)

            if booking.requester_id != requester.pk:
                if booking.spot.owner_id == requester.pk:
                    raise BookingValidationError("You can only cancel your own bookings.")
                raise NotFoundError("Booking not found.", booking_id=booking_id)

            apply_transition(booking, Booking.CANCELLED, actor=Actor.REQUESTER)

            if payment is not None and payment.status == Payment.PENDING:
                payment.status = Payment.CANCELLED
                payment.save(update_fields=["status", "updated_at"])
                logger.info(
                    "Payment %s cancelled together with booking %s",
                    payment.reference_number,
                    booking.pk,
                )
        return booking

    def complete_elapsed_bookings(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        completed = 0
        due = Booking.objects.filter(status=Booking.CONFIRMED, end__lte=now).values_list("pk", flat=True)
        for booking_id in list(due):
            with transaction.atomic():
                booking = lock_booking(booking_id)
                if booking.status != Booking.CONFIRMED:
                    continue
                apply_transition(booking, Booking.COMPLETED, actor=Actor.SYSTEM)
                completed += 1
        return completed
