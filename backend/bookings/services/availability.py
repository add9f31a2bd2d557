"""Overlap checks for spot bookings over half-open [start, end) intervals."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator

from django.db import transaction
from django.db.models import QuerySet
from django.db.utils import NotSupportedError

from bookings.models import Booking
from core.locks import KeyedLock
from parking.models import ParkingSpot


def lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


def overlapping_bookings(
    spot_id,
    start: datetime,
    end: datetime,
    *,
    active_statuses: Iterable[str] = Booking.ACTIVE_STATUSES,
    exclude_booking_id=None,
) -> QuerySet:
    queryset = Booking.objects.filter(
        spot_id=spot_id,
        status__in=list(active_statuses),
        start__lt=end,
        end__gt=start,
    )
    if exclude_booking_id is not None:
        queryset = queryset.exclude(pk=exclude_booking_id)
    return queryset


def has_conflict(
    spot_id,
    start: datetime,
    end: datetime,
    active_statuses: Iterable[str] = Booking.ACTIVE_STATUSES,
    *,
    exclude_booking_id=None,
) -> bool:
    """True when an active booking on the spot overlaps [start, end)."""
    return overlapping_bookings(
        spot_id,
        start,
        end,
        active_statuses=active_statuses,
        exclude_booking_id=exclude_booking_id,
    ).exists()


def active_intervals(spot_id) -> QuerySet:
    return (
        Booking.objects.filter(spot_id=spot_id, status__in=Booking.ACTIVE_STATUSES)
        .order_by("start")
        .values("id", "start", "end", "status")
    )


def lock_spot(spot_id) -> None:
    """Row-lock the spot until the enclosing atomic block ends."""
    queryset = lock_queryset_if_possible(ParkingSpot.objects.filter(pk=spot_id))
    list(queryset.values_list("pk", flat=True))


@contextmanager
def spot_reservation(spot_id, locks: KeyedLock) -> Iterator[None]:
    """
    Serialize check-then-insert for one spot.

    Everything executed inside the block sees a consistent view of the spot's
    bookings and commits before the next writer for the same spot proceeds.
    """
    with locks.hold(("spot", str(spot_id))):
        with transaction.atomic():
            lock_spot(spot_id)
            yield
