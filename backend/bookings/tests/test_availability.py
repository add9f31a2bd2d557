import random
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from bookings.services.availability import active_intervals, has_conflict
from bookings.services.lifecycle import BookingLifecycle
from core.exceptions import ConflictError
from core.locks import KeyedLock
from parking.models import ParkingSpot


@pytest.fixture
def spot(db):
    owner = User.objects.create_user(username="owner", email="owner@example.com", password="password123")
    return ParkingSpot.objects.create(
        owner=owner,
        title="Covered slot",
        address="1 Main St",
        city="Pasig",
        price_per_hour=Decimal("100.00"),
        status=ParkingSpot.APPROVED,
    )


@pytest.fixture
def requester(db):
    return User.objects.create_user(username="driver", email="driver@example.com", password="password123")


@pytest.fixture
def base():
    return (timezone.now() + timedelta(days=2)).replace(hour=9, minute=0, second=0, microsecond=0)


def _book(spot, requester, start, end, status=Booking.PENDING):
    return Booking.objects.create(
        spot=spot,
        requester=requester,
        start=start,
        end=end,
        total_price=Decimal("1.00"),
        status=status,
    )


def _slot_span(base, first_slot, slot_count):
    return base + timedelta(minutes=30 * first_slot), base + timedelta(minutes=30 * (first_slot + slot_count))


def _random_pairs(rng, count):
    for index in range(count):
        a_first, a_count = rng.randint(0, 24), rng.randint(1, 8)
        if index % 10 == 0:
            # Force B to start exactly where A ends.
            b_first = a_first + a_count
        else:
            b_first = rng.randint(0, 24)
        yield a_first, a_count, b_first, rng.randint(1, 8)


@pytest.mark.django_db
def test_has_conflict_matches_brute_force_over_random_pairs(spot, requester, base):
    rng = random.Random(20240601)
    for a_first, a_count, b_first, b_count in _random_pairs(rng, 200):
        shared_slots = set(range(a_first, a_first + a_count)) & set(range(b_first, b_first + b_count))
        existing = _book(spot, requester, *_slot_span(base, a_first, a_count))

        assert has_conflict(spot.id, *_slot_span(base, b_first, b_count)) == bool(shared_slots)

        existing.delete()


@pytest.mark.django_db
def test_random_booking_requests_never_leave_overlapping_active_bookings(spot, requester, base):
    rng = random.Random(20240601)
    lifecycle = BookingLifecycle(locks=KeyedLock())
    taken_slots = set()
    for _ in range(150):
        first_slot, slot_count = rng.randint(0, 40), rng.randint(1, 6)
        wanted = set(range(first_slot, first_slot + slot_count))
        start, end = _slot_span(base, first_slot, slot_count)
        try:
            lifecycle.create_booking(requester=requester, spot_id=spot.id, start=start, end=end)
        except ConflictError:
            assert wanted & taken_slots
        else:
            assert not wanted & taken_slots
            taken_slots |= wanted

    bookings = list(Booking.objects.filter(spot=spot, status__in=Booking.ACTIVE_STATUSES).order_by("start"))
    assert bookings
    for earlier, later in zip(bookings, bookings[1:]):
        assert earlier.end <= later.start


@pytest.mark.django_db
def test_adjacent_booking_is_accepted_through_the_lifecycle(spot, requester, base):
    lifecycle = BookingLifecycle(locks=KeyedLock())
    lifecycle.create_booking(requester=requester, spot_id=spot.id, start=base, end=base + timedelta(hours=1))

    after = lifecycle.create_booking(
        requester=requester, spot_id=spot.id, start=base + timedelta(hours=1), end=base + timedelta(hours=2)
    )
    before = lifecycle.create_booking(
        requester=requester, spot_id=spot.id, start=base - timedelta(hours=1), end=base
    )

    assert after.status == before.status == Booking.PENDING


@pytest.mark.django_db
def test_has_conflict_detects_overlap_with_pending_booking(spot, requester, base):
    _book(spot, requester, base, base + timedelta(hours=2))

    assert has_conflict(spot.id, base + timedelta(hours=1), base + timedelta(hours=3))
    assert has_conflict(spot.id, base - timedelta(minutes=30), base + timedelta(minutes=1))


@pytest.mark.django_db
def test_touching_bookings_are_not_conflicts(spot, requester, base):
    _book(spot, requester, base, base + timedelta(hours=1))

    assert not has_conflict(spot.id, base + timedelta(hours=1), base + timedelta(hours=2))
    assert not has_conflict(spot.id, base - timedelta(hours=1), base)


@pytest.mark.django_db
def test_only_active_bookings_block(spot, requester, base):
    _book(spot, requester, base, base + timedelta(hours=2), status=Booking.CANCELLED)
    _book(spot, requester, base, base + timedelta(hours=2), status=Booking.COMPLETED)

    assert not has_conflict(spot.id, base, base + timedelta(hours=2))

    _book(spot, requester, base, base + timedelta(hours=2), status=Booking.CONFIRMED)

    assert has_conflict(spot.id, base, base + timedelta(hours=2))
    assert not has_conflict(spot.id, base, base + timedelta(hours=2), active_statuses=[Booking.PENDING])


@pytest.mark.django_db
def test_conflicts_are_per_spot_and_can_exclude_a_booking(spot, requester, base):
    other_spot = ParkingSpot.objects.create(
        owner=spot.owner,
        title="Open slot",
        address="1 Main St",
        city="Pasig",
        price_per_hour=Decimal("50.00"),
        status=ParkingSpot.APPROVED,
    )
    booking = _book(spot, requester, base, base + timedelta(hours=2))

    assert not has_conflict(other_spot.id, base, base + timedelta(hours=2))
    assert not has_conflict(spot.id, base, base + timedelta(hours=2), exclude_booking_id=booking.id)


@pytest.mark.django_db
def test_active_intervals_are_ordered_and_skip_cancelled(spot, requester, base):
    later = _book(spot, requester, base + timedelta(hours=5), base + timedelta(hours=6), status=Booking.CONFIRMED)
    earlier = _book(spot, requester, base, base + timedelta(hours=1))
    _book(spot, requester, base + timedelta(hours=2), base + timedelta(hours=3), status=Booking.CANCELLED)

    intervals = list(active_intervals(spot.id))

    assert [row["id"] for row in intervals] == [earlier.id, later.id]
    assert intervals[1]["status"] == Booking.CONFIRMED
