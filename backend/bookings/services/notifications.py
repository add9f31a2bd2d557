from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import send_mail

from bookings.models import Booking

logger = logging.getLogger(__name__)

OWNER = "owner"
REQUESTER = "requester"

GUEST_PARKING_NOTICE = "guest_parking_notice"
BOOKING_CONFIRMED = "booking_confirmed"


def _format_from_email(display_name: str) -> str:
    default_from = settings.DEFAULT_FROM_EMAIL
    email_addr = default_from
    if '<' in default_from and default_from.endswith('>'):
        email_addr = default_from.split('<', 1)[1].rstrip('>')
    return f"{display_name} via ParkSpot <{email_addr}>"


def _schedule_lines(booking: Booking) -> list[str]:
    return [
        f"From: {booking.start:%B %d, %Y %I:%M %p}",
        f"Until: {booking.end:%B %d, %Y %I:%M %p}",
    ]


def _vehicle_lines(booking: Booking) -> list[str]:
    model = booking.vehicle_model or "N/A"
    if booking.vehicle_color:
        model = f"{model} ({booking.vehicle_color})"
    return [
        f"Plate No.: {booking.vehicle_plate_number or 'N/A'}",
        f"Model/Color: {model}",
    ]


def _guest_parking_notice(booking: Booking) -> tuple[str, str, str]:
    spot = booking.spot
    requester = booking.requester
    subject = f"Temporary guest parking: {spot.label}"
    body_lines = [
        f"Hi {spot.owner.first_name or spot.owner.email},",
        "",
        f"{requester.full_name} has booked and paid for {spot.label}.",
        "",
        *_schedule_lines(booking),
        f"Tower & unit: {booking.tower or 'N/A'} {booking.unit_number}".rstrip(),
        "",
        *_vehicle_lines(booking),
        "",
        "Please let building management know your guest will be using the slot.",
    ]
    return subject, "\n".join(body_lines), spot.owner.email


def _booking_confirmed(booking: Booking) -> tuple[str, str, str]:
    spot = booking.spot
    requester = booking.requester
    payment = getattr(booking, "payment", None)
    subject = f"Booking confirmed: {spot.label}"
    body_lines = [
        f"Hi {requester.first_name or requester.email},",
        "",
        "Your parking booking has been confirmed. Thank you for your payment.",
        "",
        f"Invoice #: INV-{booking.pk:08d}",
        f"Parking slot: {spot.label}, {spot.address}",
        *_schedule_lines(booking),
        "",
        *_vehicle_lines(booking),
        "",
        f"Total amount: {payment.currency if payment else ''} {booking.total_price}".strip(),
    ]
    if payment is not None:
        body_lines.append(f"Payment reference: {payment.reference_number}")
    return subject, "\n".join(body_lines), requester.email


TEMPLATES = {
    (OWNER, GUEST_PARKING_NOTICE): _guest_parking_notice,
    (REQUESTER, BOOKING_CONFIRMED): _booking_confirmed,
}


class EmailNotificationDispatcher:
    """Send booking notifications by email. Failures are logged, never raised."""

    def notify(self, recipient_role: str, booking_id, template_kind: str) -> bool:
        render = TEMPLATES.get((recipient_role, template_kind))
        if render is None:
            logger.warning("No %s template for %s notifications", template_kind, recipient_role)
            return False

        try:
            booking = Booking.objects.select_related("spot", "spot__owner", "requester", "payment").get(pk=booking_id)
            subject, body, recipient = render(booking)
            if not recipient:
                logger.info("Booking %s has no %s email address; skipping", booking_id, recipient_role)
                return False
            send_mail(
                subject,
                body,
                _format_from_email(booking.spot.owner.full_name),
                [recipient],
                fail_silently=False,
            )
        except Exception:
            logger.exception(
                "Failed to send %s notification to %s for booking %s",
                template_kind,
                recipient_role,
                booking_id,
            )
            return False

        logger.info("Sent %s notification to %s for booking %s", template_kind, recipient_role, booking_id)
        return True
