import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import connection
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from bookings.services.lifecycle import BookingLifecycle
from core.exceptions import InvalidStateTransition
from core.locks import KeyedLock
from parking.models import ParkingSpot
from payments.models import Payment
from payments.services.reconciler import PaymentReconciler


class RecordingNotifier:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def notify(self, recipient_role, booking_id, template_kind):
        with self._lock:
            self.calls.append((recipient_role, template_kind))
        return True


@pytest.fixture
def requester(transactional_db):
    return User.objects.create_user(username="driver", email="driver@example.com", password="password123")


@pytest.fixture
def payment(transactional_db, requester):
    owner = User.objects.create_user(username="owner", email="owner@example.com", password="password123")
    spot = ParkingSpot.objects.create(
        owner=owner,
        title="Covered slot",
        address="1 Main St",
        city="Pasig",
        price_per_hour=Decimal("100.00"),
        status=ParkingSpot.APPROVED,
    )
    start = timezone.now() + timedelta(days=1)
    booking = Booking.objects.create(
        spot=spot,
        requester=requester,
        start=start,
        end=start + timedelta(hours=1),
        total_price=Decimal("100.00"),
    )
    return Payment.objects.create(booking=booking, reference_number="PKG_race_1", external_id="ext_race_1", amount_cents=10000)


def _run_concurrently(*targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def wrap(target):
        try:
            barrier.wait()
            target()
        except Exception as exc:  # collected for the assertions
            errors.append(exc)
        finally:
            connection.close()

    threads = [threading.Thread(target=wrap, args=(target,)) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads)
    return errors


@pytest.mark.django_db(transaction=True)
def test_duplicate_deliveries_notify_exactly_once(payment):
    notifier = RecordingNotifier()
    reconciler = PaymentReconciler(notifier=notifier, locks=KeyedLock())

    def deliver():
        reconciler.reconcile(external_id="ext_race_1", reported_status="SUCCEEDED", event_id="evt_race")

    errors = _run_concurrently(*[deliver] * 4)

    assert errors == []
    assert len(notifier.calls) == 2
    payment.refresh_from_db()
    assert payment.status == Payment.SUCCEEDED
    assert Booking.objects.get(pk=payment.booking_id).status == Booking.CONFIRMED


@pytest.mark.django_db(transaction=True)
def test_cancel_racing_success_leaves_consistent_state(payment, requester):
    locks = KeyedLock()
    notifier = RecordingNotifier()
    reconciler = PaymentReconciler(notifier=notifier, locks=locks)
    lifecycle = BookingLifecycle(locks=locks)

    errors = _run_concurrently(
        lambda: lifecycle.cancel_booking(payment.booking_id, requester),
        lambda: reconciler.reconcile(reference_number="PKG_race_1", reported_status="SUCCEEDED"),
    )

    assert all(isinstance(error, InvalidStateTransition) for error in errors)
    payment.refresh_from_db()
    booking = Booking.objects.get(pk=payment.booking_id)
    assert payment.status == Payment.SUCCEEDED
    if booking.status == Booking.CONFIRMED:
        # reconciler won; the requester's cancel was refused
        assert len(errors) == 1
        assert len(notifier.calls) == 2
    else:
        assert booking.status == Booking.CANCELLED
        assert errors == []
        assert notifier.calls == []
