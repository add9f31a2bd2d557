from __future__ import annotations

import logging

from django.conf import settings
from django.db import transaction

from bookings.models import Booking
from bookings.services.availability import lock_queryset_if_possible
from bookings.services.lifecycle import lock_booking
from core.exceptions import BookingValidationError, NotFoundError
from payments.models import Payment
from payments.services.gateway import PaymentGatewayClient

logger = logging.getLogger(__name__)


def _payable_booking(booking_id, requester) -> Booking:
    booking = Booking.objects.select_related("spot").filter(pk=booking_id).first()
    if booking is None or booking.requester_id != requester.pk:
        raise NotFoundError("Booking not found.", booking_id=booking_id)
    if booking.status != Booking.PENDING:
        raise BookingValidationError(f"Only pending bookings can be paid; this one is {booking.status.lower()}.")
    return booking


def _existing_payment(booking: Booking) -> Payment | None:
    payment = Payment.objects.filter(booking=booking).first()
    if payment is None:
        return None
    if payment.status != Payment.PENDING:
        raise BookingValidationError(f"Payment for this booking is already {payment.status.lower()}.")
    return payment


def initiate_payment(booking_id, requester, gateway: PaymentGatewayClient) -> Payment:
    """
    Create the gateway charge and the local Payment for a PENDING booking.

    Calling it again while the payment is still PENDING returns the existing
    payment instead of creating a second charge. The gateway call happens
    outside any transaction; the Payment row is written under the booking row
    lock after re-checking that the booking is still PENDING.
    """

    booking = _payable_booking(booking_id, requester)
    existing = _existing_payment(booking)
    if existing is not None:
        logger.info("Reusing pending payment %s for booking %s", existing.reference_number, booking.pk)
        return existing

    amount_cents = booking.total_price_cents
    currency = settings.PAYMENT_CURRENCY
    description = f"Parking Booking #{booking.pk}"
    metadata = {
        "booking_id": booking.pk,
        "spot_id": booking.spot_id,
        "description": description,
        "customer": {
            "name": requester.get_full_name() or requester.email,
            "email": requester.email,
        },
    }
    charge = gateway.create_charge(amount_cents=amount_cents, currency=currency, metadata=metadata)
    logger.info(
        "Gateway %s created charge %s for booking %s (%s %s)",
        gateway.name,
        charge.reference_number,
        booking.pk,
        amount_cents,
        currency,
    )

    with transaction.atomic():
        # Payment rows before booking rows, as in the reconciler.
        existing = lock_queryset_if_possible(Payment.objects.filter(booking_id=booking.pk)).first()
        booking = lock_booking(booking.pk)
        if booking.status != Booking.PENDING:
            raise BookingValidationError(
                f"Only pending bookings can be paid; this one is {booking.status.lower()}."
            )
        if existing is not None:
            # Another request won the race; the charge just created is left to expire at the gateway.
            logger.warning(
                "Booking %s already has payment %s; discarding charge %s",
                booking.pk,
                existing.reference_number,
                charge.reference_number,
            )
            return existing

        payment = Payment.objects.create(
            booking=booking,
            reference_number=charge.reference_number,
            external_id=charge.external_id,
            gateway=gateway.name,
            amount_cents=amount_cents,
            currency=currency,
            status=Payment.PENDING,
            description=description,
            checkout_url=charge.checkout_url,
            metadata={"spot_id": booking.spot_id, "customer": metadata["customer"]},
        )

    logger.info("Payment %s recorded for booking %s", payment.reference_number, booking.pk)
    return payment
