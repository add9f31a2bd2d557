from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.api import LoginView, MeView
from bookings.api import BookingViewSet
from parking.api import ParkingSpotViewSet
from payments.api import (
    ExperiaWebhookView,
    PaymentForBookingView,
    PaymentInitiateView,
    PaymentStatusView,
    StripeWebhookView,
)

router = DefaultRouter()
router.register(r"spots", ParkingSpotViewSet, basename="spot")
router.register(r"bookings", BookingViewSet, basename="booking")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/token/", LoginView.as_view(), name="auth-token"),
    path("api/auth/refresh/", TokenRefreshView.as_view(), name="auth-refresh"),
    path("api/auth/me/", MeView.as_view(), name="auth-me"),
    path("api/payments/", PaymentInitiateView.as_view(), name="payment-initiate"),
    path("api/payments/webhooks/experia/", ExperiaWebhookView.as_view(), name="experia-webhook"),
    path("api/payments/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path(
        "api/payments/booking/<int:booking_id>/",
        PaymentForBookingView.as_view(),
        name="payment-for-booking",
    ),
    path(
        "api/payments/<str:reference_number>/",
        PaymentStatusView.as_view(),
        name="payment-status",
    ),
    path("api/", include(router.urls)),
]
