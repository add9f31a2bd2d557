from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from bookings.services import lifecycle as lifecycle_module
from bookings.services.lifecycle import (
    Actor,
    BookingLifecycle,
    apply_transition,
    calculate_total_price,
)
from core.exceptions import (
    BookingValidationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
)
from core.locks import KeyedLock
from parking.models import ParkingSpot
from payments.models import Payment


@pytest.fixture
def owner(db):
    return User.objects.create_user(
        username="owner",
        email="owner@example.com",
        password="password123",
        first_name="Olivia",
        last_name="Owner",
    )


@pytest.fixture
def requester(db):
    return User.objects.create_user(
        username="driver",
        email="driver@example.com",
        password="password123",
        first_name="Dana",
        last_name="Driver",
    )


@pytest.fixture
def spot(owner):
    return ParkingSpot.objects.create(
        owner=owner,
        title="Covered slot",
        address="1 Main St",
        city="Pasig",
        tower="Tower 1",
        slot_number="B2-14",
        price_per_hour=Decimal("100.00"),
        status=ParkingSpot.APPROVED,
    )


@pytest.fixture
def lifecycle():
    return BookingLifecycle(locks=KeyedLock())


@pytest.fixture
def start():
    return (timezone.now() + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)


def test_total_price_rounds_up_to_the_cent(start):
    assert calculate_total_price(start, start + timedelta(hours=1), Decimal("100.00")) == Decimal("100.00")
    assert calculate_total_price(start, start + timedelta(minutes=90), Decimal("45.50")) == Decimal("68.25")
    # 20 minutes at 10.00/hr is 3.333...
    assert calculate_total_price(start, start + timedelta(minutes=20), Decimal("10.00")) == Decimal("3.34")
    assert calculate_total_price(start, start + timedelta(seconds=1), Decimal("0.01")) == Decimal("0.01")


@pytest.mark.django_db
def test_create_booking_is_pending_with_fixed_price(lifecycle, requester, spot, start):
    booking = lifecycle.create_booking(
        requester=requester,
        spot_id=spot.id,
        start=start,
        end=start + timedelta(hours=1),
        vehicle_plate_number="NAB 1234",
    )

    booking.refresh_from_db()
    assert booking.status == Booking.PENDING
    assert booking.total_price == Decimal("100.00")
    assert booking.total_price_cents == 10000
    assert booking.vehicle_plate_number == "NAB 1234"


@pytest.mark.django_db
@pytest.mark.parametrize(
    "offset_start, offset_end",
    [
        (timedelta(hours=1), timedelta(hours=1)),
        (timedelta(hours=2), timedelta(hours=1)),
    ],
)
def test_create_booking_rejects_empty_or_inverted_interval(lifecycle, requester, spot, start, offset_start, offset_end):
    with pytest.raises(BookingValidationError):
        lifecycle.create_booking(
            requester=requester,
            spot_id=spot.id,
            start=start + offset_start,
            end=start + offset_end,
        )

    assert not Booking.objects.exists()


@pytest.mark.django_db
def test_create_booking_rejects_past_start(lifecycle, requester, spot):
    start = timezone.now() - timedelta(minutes=5)

    with pytest.raises(BookingValidationError):
        lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))


@pytest.mark.django_db
def test_owner_cannot_book_own_spot(lifecycle, owner, spot, start):
    with pytest.raises(BookingValidationError):
        lifecycle.create_booking(requester=owner, spot_id=spot.id, start=start, end=start + timedelta(hours=1))


@pytest.mark.django_db
@pytest.mark.parametrize("status", [ParkingSpot.PENDING, ParkingSpot.REJECTED, ParkingSpot.INACTIVE])
def test_unapproved_spot_cannot_be_booked(lifecycle, requester, spot, start, status):
    spot.status = status
    spot.save(update_fields=["status"])

    with pytest.raises(BookingValidationError):
        lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))


@pytest.mark.django_db
def test_unknown_spot_is_not_found(lifecycle, requester, start):
    with pytest.raises(NotFoundError):
        lifecycle.create_booking(requester=requester, spot_id=9999, start=start, end=start + timedelta(hours=1))


@pytest.mark.django_db
def test_overlapping_booking_conflicts_but_adjacent_one_succeeds(lifecycle, requester, spot, start):
    lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=2))

    with pytest.raises(ConflictError):
        lifecycle.create_booking(
            requester=requester,
            spot_id=spot.id,
            start=start + timedelta(hours=1),
            end=start + timedelta(hours=3),
        )

    adjacent = lifecycle.create_booking(
        requester=requester,
        spot_id=spot.id,
        start=start + timedelta(hours=2),
        end=start + timedelta(hours=3),
    )
    assert adjacent.status == Booking.PENDING
    assert Booking.objects.count() == 2


@pytest.mark.django_db
def test_cancelled_booking_frees_the_slot(lifecycle, requester, spot, start):
    first = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    lifecycle.cancel_booking(first.id, requester)

    second = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))

    assert second.status == Booking.PENDING


@pytest.mark.django_db
def test_cancel_pending_booking_cancels_pending_payment(lifecycle, requester, spot, start):
    booking = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    payment = Payment.objects.create(
        booking=booking,
        reference_number="PKG_1",
        external_id="ext_1",
        amount_cents=booking.total_price_cents,
    )

    lifecycle.cancel_booking(booking.id, requester)

    booking.refresh_from_db()
    payment.refresh_from_db()
    assert booking.status == Booking.CANCELLED
    assert payment.status == Payment.CANCELLED


@pytest.mark.django_db
def test_cancel_picks_up_payment_recorded_while_waiting_for_booking_lock(
    monkeypatch, lifecycle, requester, spot, start
):
    booking = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    payment = Payment.objects.create(
        booking=booking,
        reference_number="PKG_race",
        external_id="ext_race",
        amount_cents=booking.total_price_cents,
    )
    real_payment_id_for = lifecycle_module._payment_id_for
    lookups = []

    def payment_id_for(booking_id):
        # The first lookup runs before checkout commits its payment.
        lookups.append(booking_id)
        if len(lookups) == 1:
            return None
        return real_payment_id_for(booking_id)

    monkeypatch.setattr(lifecycle_module, "_payment_id_for", payment_id_for)

    lifecycle.cancel_booking(booking.id, requester)

    booking.refresh_from_db()
    payment.refresh_from_db()
    assert booking.status == Booking.CANCELLED
    assert payment.status == Payment.CANCELLED
    assert len(lookups) == 3


@pytest.mark.django_db
@pytest.mark.parametrize("status", [Booking.CONFIRMED, Booking.COMPLETED, Booking.CANCELLED])
def test_requester_cannot_cancel_outside_pending(lifecycle, requester, spot, start, status):
    booking = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    Booking.objects.filter(pk=booking.pk).update(status=status)

    with pytest.raises(InvalidStateTransition):
        lifecycle.cancel_booking(booking.id, requester)

    booking.refresh_from_db()
    assert booking.status == status


@pytest.mark.django_db
def test_only_the_requester_may_cancel(lifecycle, owner, requester, spot, start):
    booking = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    stranger = User.objects.create_user(username="stranger", email="stranger@example.com", password="password123")

    with pytest.raises(BookingValidationError):
        lifecycle.cancel_booking(booking.id, owner)
    with pytest.raises(NotFoundError):
        lifecycle.cancel_booking(booking.id, stranger)

    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_get_booking_for_user_hides_from_strangers(lifecycle, owner, requester, spot, start):
    booking = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    stranger = User.objects.create_user(username="stranger", email="stranger@example.com", password="password123")

    assert lifecycle.get_booking_for_user(booking.id, requester) == booking
    assert lifecycle.get_booking_for_user(booking.id, owner) == booking
    with pytest.raises(NotFoundError):
        lifecycle.get_booking_for_user(booking.id, stranger)


@pytest.mark.django_db
def test_transitions_are_restricted_by_actor(lifecycle, requester, spot, start):
    booking = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))

    with pytest.raises(InvalidStateTransition):
        apply_transition(booking, Booking.CONFIRMED, actor=Actor.REQUESTER)
    with pytest.raises(InvalidStateTransition):
        apply_transition(booking, Booking.COMPLETED, actor=Actor.SYSTEM)

    apply_transition(booking, Booking.CONFIRMED, actor=Actor.RECONCILER)
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED


@pytest.mark.django_db
def test_complete_elapsed_bookings_only_touches_confirmed_past_bookings(requester, spot, start):
    clock_now = start + timedelta(hours=3)
    lifecycle = BookingLifecycle(locks=KeyedLock(), clock=lambda: start - timedelta(hours=1))
    done = lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=start + timedelta(hours=1))
    pending = lifecycle.create_booking(
        requester=requester,
        spot_id=spot.id,
        start=start + timedelta(hours=1),
        end=start + timedelta(hours=2),
    )
    future = lifecycle.create_booking(
        requester=requester,
        spot_id=spot.id,
        start=start + timedelta(hours=4),
        end=start + timedelta(hours=5),
    )
    Booking.objects.filter(pk__in=[done.pk, future.pk]).update(status=Booking.CONFIRMED)

    assert lifecycle.complete_elapsed_bookings(now=clock_now) == 1

    statuses = dict(Booking.objects.values_list("pk", "status"))
    assert statuses[done.pk] == Booking.COMPLETED
    assert statuses[pending.pk] == Booking.PENDING
    assert statuses[future.pk] == Booking.CONFIRMED
