from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Booking
from bookings.serializers import BookingCreateSerializer, BookingSerializer
from core.api import error_response
from core.exceptions import MarketplaceError
from payments.services.factory import build_lifecycle


class BookingViewSet(viewsets.ViewSet):
    """
    Bookings made by the current user.

    ``?role=owner`` lists bookings on the user's own spots instead. Creation
    and cancellation go through the booking lifecycle; payment state is only
    changed by reconciliation.
    """

    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = r"\d+"

    def _queryset(self, request):
        queryset = Booking.objects.select_related("spot", "requester", "payment")
        if request.query_params.get("role") == "owner":
            queryset = queryset.filter(spot__owner=request.user)
        else:
            queryset = queryset.filter(requester=request.user)
        status_filter = request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter.upper())
        return queryset.order_by("-start")

    def list(self, request):
        serializer = BookingSerializer(self._queryset(request), many=True)
        return Response(serializer.data)

    def retrieve(self, request, pk=None):
        try:
            booking = build_lifecycle().get_booking_for_user(pk, request.user)
        except MarketplaceError as exc:
            return error_response(exc)
        return Response(BookingSerializer(booking).data)

    def create(self, request):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        try:
            booking = build_lifecycle().create_booking(
                requester=request.user,
                spot_id=data.pop("spot_id"),
                start=data.pop("start"),
                end=data.pop("end"),
                **data,
            )
        except MarketplaceError as exc:
            return error_response(exc)
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        try:
            build_lifecycle().cancel_booking(pk, request.user)
        except MarketplaceError as exc:
            return error_response(exc)
        booking = Booking.objects.select_related("spot", "requester", "payment").get(pk=pk)
        return Response(BookingSerializer(booking).data)
