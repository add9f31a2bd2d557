from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote
from uuid import uuid4

import requests
import stripe

from core.exceptions import GatewayError
from payments.services.statuses import ReportedStatus

logger = logging.getLogger(__name__)


@dataclass
class Charge:
    """What the booking flow needs back from a gateway after creating a charge."""

    reference_number: str
    external_id: str
    checkout_url: str
    status: str


def build_checkout_preview_url(*, frontend_url: str, booking_id, amount_cents: int, reference_number: str) -> str:
    return (
        f"{frontend_url.rstrip('/')}/payments/preview?"
        f"booking={booking_id}&amount={amount_cents}&reference={reference_number}"
    )


def _callback_url(frontend_url: str, outcome: str) -> str:
    return f"{frontend_url.rstrip('/')}/payment/callback?reference={{referenceNumber}}&status={outcome}"


class PaymentGatewayClient:
    name = ""

    def create_charge(self, *, amount_cents: int, currency: str, metadata: Dict[str, Any]) -> Charge:
        raise NotImplementedError

    def fetch_status(self, reference_number: str) -> str:
        raise NotImplementedError


class StubGatewayClient(PaymentGatewayClient):
    """
    Stand-in gateway for tests and local development.

    Charges get predictable identifiers and a preview link on the frontend so
    the rest of the flow (payment records, reconciliation, emails) behaves as
    if a real gateway had answered. Statuses stay PENDING until ``set_status``
    is called. Only the newest ``max_tracked`` charges are remembered; older
    ones read as PENDING again.
    """

    name = "stub"

    def __init__(self, *, frontend_url: str = "http://localhost:8080", max_tracked: int = 1000):
        self.frontend_url = frontend_url
        self.max_tracked = max_tracked
        self._statuses: Dict[str, str] = {}

    def create_charge(self, *, amount_cents: int, currency: str, metadata: Dict[str, Any]) -> Charge:
        reference_number = f"PKG_stub_{uuid4().hex[:16]}"
        self._statuses[reference_number] = ReportedStatus.PENDING.value
        while len(self._statuses) > self.max_tracked:
            self._statuses.pop(next(iter(self._statuses)))
        return Charge(
            reference_number=reference_number,
            external_id=f"stub_{uuid4().hex}",
            checkout_url=build_checkout_preview_url(
                frontend_url=self.frontend_url,
                booking_id=metadata.get("booking_id"),
                amount_cents=amount_cents,
                reference_number=reference_number,
            ),
            status=ReportedStatus.PENDING.value,
        )

    def fetch_status(self, reference_number: str) -> str:
        return self._statuses.get(reference_number, ReportedStatus.PENDING.value)

    def set_status(self, reference_number: str, status: str) -> None:
        self._statuses[reference_number] = status


class ExperiaGatewayClient(PaymentGatewayClient):
    """REST client for the Experia payment gateway (amounts in centavos)."""

    name = "experia"

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        frontend_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise RuntimeError("EXPERIA_PG_API_KEY is not configured.")
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.frontend_url = frontend_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GatewayError(f"Payment gateway unreachable: {exc}", url=url) from exc

        if not response.ok:
            message = f"Payment API error: {response.status_code} {response.reason}"
            try:
                message = response.json()["error"]["message"] or message
            except (ValueError, KeyError, TypeError):
                pass
            raise GatewayError(message, url=url, upstream_status=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError("Payment gateway returned invalid JSON.", url=url) from exc

    def create_charge(self, *, amount_cents: int, currency: str, metadata: Dict[str, Any]) -> Charge:
        booking_id = metadata.get("booking_id")
        payload = {
            "amount": amount_cents,
            "currency": currency,
            "description": metadata.get("description") or f"Parking Booking #{booking_id}",
            "successUrl": _callback_url(self.frontend_url, "success"),
            "cancelUrl": _callback_url(self.frontend_url, "cancelled"),
            "metadata": {**metadata, "type": "parking_booking"},
        }
        customer = metadata.get("customer")
        if customer:
            payload["customer"] = customer

        logger.info("Creating payment for booking %s with amount %s centavos", booking_id, amount_cents)
        data = self._request("POST", "/payments", json=payload)
        if not data.get("fullOrderRef"):
            raise GatewayError("Invalid payment response format from gateway.")

        return Charge(
            reference_number=data["fullOrderRef"],
            external_id=data.get("externalId") or "",
            checkout_url=data.get("checkoutUrl") or "",
            status=data.get("status") or ReportedStatus.PENDING.value,
        )

    def fetch_status(self, reference_number: str) -> str:
        data = self._request("GET", f"/payments/{quote(reference_number, safe='')}")
        return data.get("status") or ""


def _stripe_session_status(session) -> str:
    if getattr(session, "payment_status", None) in ("paid", "no_payment_required"):
        return ReportedStatus.SUCCEEDED.value
    if getattr(session, "status", None) == "expired":
        return ReportedStatus.CANCELLED.value
    return ReportedStatus.PENDING.value


class StripeGatewayClient(PaymentGatewayClient):
    """Stripe Checkout; the session id serves as both reference and external id."""

    name = "stripe"

    def __init__(self, *, api_key: str, frontend_url: str):
        if not api_key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
        self.api_key = api_key
        self.frontend_url = frontend_url

    def create_charge(self, *, amount_cents: int, currency: str, metadata: Dict[str, Any]) -> Charge:
        stripe.api_key = self.api_key
        booking_id = metadata.get("booking_id")
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": currency.lower(),
                            "unit_amount": amount_cents,
                            "product_data": {
                                "name": metadata.get("description") or f"Parking Booking #{booking_id}",
                            },
                        },
                    }
                ],
                success_url=f"{self.frontend_url}/payment/callback?booking={booking_id}&status=success",
                cancel_url=f"{self.frontend_url}/payment/callback?booking={booking_id}&status=cancelled",
                client_reference_id=str(booking_id),
                metadata={key: str(value) for key, value in metadata.items() if not isinstance(value, dict)},
            )
        except stripe.StripeError as exc:
            logger.exception("Failed to create Stripe checkout session for booking %s", booking_id)
            raise GatewayError(str(exc)) from exc

        return Charge(
            reference_number=session.id,
            external_id=session.id,
            checkout_url=session.url,
            status=_stripe_session_status(session),
        )

    def fetch_status(self, reference_number: str) -> str:
        stripe.api_key = self.api_key
        try:
            session = stripe.checkout.Session.retrieve(reference_number)
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), reference_number=reference_number) from exc
        return _stripe_session_status(session)
