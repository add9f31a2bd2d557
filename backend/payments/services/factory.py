"""Build the booking and payment services from Django settings."""

from __future__ import annotations

import time

from django.conf import settings

from bookings.services.lifecycle import BookingLifecycle
from bookings.services.notifications import EmailNotificationDispatcher
from payments.services.gateway import (
    ExperiaGatewayClient,
    PaymentGatewayClient,
    StripeGatewayClient,
    StubGatewayClient,
)
from payments.services.poller import StatusPoller
from payments.services.reconciler import PaymentReconciler

_stub_gateway: StubGatewayClient | None = None


def _get_stub_gateway() -> StubGatewayClient:
    # One instance per process so statuses set during local testing persist between requests.
    global _stub_gateway
    if _stub_gateway is None:
        _stub_gateway = StubGatewayClient(frontend_url=settings.FRONTEND_URL)
    return _stub_gateway


def get_gateway() -> PaymentGatewayClient:
    name = (getattr(settings, "PAYMENT_GATEWAY", "") or "stub").lower()
    if name == "stub":
        return _get_stub_gateway()
    if name == "experia":
        return ExperiaGatewayClient(
            api_url=settings.EXPERIA_PG_API_URL,
            api_key=settings.EXPERIA_PG_API_KEY,
            frontend_url=settings.FRONTEND_URL,
            timeout=settings.EXPERIA_PG_TIMEOUT,
        )
    if name == "stripe":
        return StripeGatewayClient(api_key=settings.STRIPE_SECRET_KEY, frontend_url=settings.FRONTEND_URL)
    raise RuntimeError(f"Unknown PAYMENT_GATEWAY {name!r}.")


def build_lifecycle() -> BookingLifecycle:
    return BookingLifecycle()


def build_reconciler() -> PaymentReconciler:
    return PaymentReconciler(notifier=EmailNotificationDispatcher())


def build_poller(*, gateway: PaymentGatewayClient | None = None, sleep=time.sleep) -> StatusPoller:
    return StatusPoller(
        gateway=gateway or get_gateway(),
        reconciler=build_reconciler(),
        sleep=sleep,
        max_delay=settings.PAYMENT_POLL_MAX_DELAY,
        error_delay=settings.PAYMENT_POLL_ERROR_DELAY,
    )
