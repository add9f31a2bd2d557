import json
import logging

import stripe
from django.conf import settings
from django.db.models import Q
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.api import error_response
from core.exceptions import MarketplaceError, NotFoundError
from payments.models import Payment
from payments.serializers import PaymentInitiateSerializer, PaymentSerializer
from payments.services.checkout import initiate_payment
from payments.services.factory import build_poller, build_reconciler, get_gateway
from payments.services.webhooks import parse_experia_event, parse_stripe_event, verify_experia_signature

logger = logging.getLogger(__name__)


def _visible_payments(user):
    return Payment.objects.select_related("booking").filter(
        Q(booking__requester=user) | Q(booking__spot__owner=user)
    )


class PaymentInitiateView(APIView):
    """Start (or resume) payment for one of the user's pending bookings."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = PaymentInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            payment = initiate_payment(serializer.validated_data["booking_id"], request.user, get_gateway())
        except MarketplaceError as exc:
            return error_response(exc)
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class PaymentStatusView(APIView):
    """Return a payment, asking the gateway for news first while it is still pending."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, reference_number, *args, **kwargs):
        payment = _visible_payments(request.user).filter(reference_number=reference_number).first()
        if payment is None:
            return error_response(NotFoundError("Payment not found."))

        if payment.status == Payment.PENDING:
            try:
                build_poller().refresh_status(reference_number)
            except MarketplaceError as exc:
                logger.warning("Status refresh for payment %s failed: %s", reference_number, exc)
                return error_response(exc)
            payment.refresh_from_db()
            payment.booking.refresh_from_db()

        return Response(PaymentSerializer(payment).data)


class PaymentForBookingView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, booking_id, *args, **kwargs):
        payment = _visible_payments(request.user).filter(booking_id=booking_id).first()
        if payment is None:
            return error_response(NotFoundError("Payment not found for this booking."))
        return Response(PaymentSerializer(payment).data)


class ExperiaWebhookView(APIView):
    """Receive Experia payment notifications signed with HMAC-SHA256."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        signature = request.META.get("HTTP_EXPERIA_SIGNATURE")
        if not settings.EXPERIA_PG_WEBHOOK_SECRET:
            logger.error("Experia webhook secret not configured.")
        if not verify_experia_signature(payload, signature, settings.EXPERIA_PG_WEBHOOK_SECRET):
            logger.warning("Invalid Experia webhook signature.")
            return Response({"detail": "Invalid signature."}, status=status.HTTP_400_BAD_REQUEST)

        try:
            body = json.loads(payload)
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning("Invalid payload received on Experia webhook.")
            return Response({"detail": "Invalid payload."}, status=status.HTTP_400_BAD_REQUEST)

        event = parse_experia_event(body)
        logger.info("Experia webhook %s received for %s", event.event_type, event.correlation_id)
        try:
            build_reconciler().reconcile_event(event)
        except Exception:  # webhooks are always acknowledged
            logger.exception("Error reconciling Experia webhook for %s", event.correlation_id)
        return Response({"received": True})


class StripeWebhookView(APIView):
    """Receive Stripe Checkout session events."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            logger.warning("Invalid payload received on Stripe webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except stripe.SignatureVerificationError:
            logger.warning("Invalid Stripe signature.")
            return Response(status=status.HTTP_400_BAD_REQUEST)

        event = parse_stripe_event(json.loads(payload))
        logger.info("Stripe webhook %s received for %s", event.event_type, event.correlation_id)
        try:
            build_reconciler().reconcile_event(event)
        except Exception:  # webhooks are always acknowledged
            logger.exception("Error reconciling Stripe webhook for %s", event.correlation_id)
        return Response({"received": True})
