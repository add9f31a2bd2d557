from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.services.availability import active_intervals
from parking.models import ParkingSpot
from parking.serializers import BookedIntervalSerializer, ParkingSpotSerializer


class ParkingSpotViewSet(viewsets.ReadOnlyModelViewSet):
    """Approved spots only; listing and approval are handled in the admin."""

    serializer_class = ParkingSpotSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["city", "tower"]
    search_fields = ["title", "address", "city"]
    ordering_fields = ["price_per_hour", "created_at"]

    def get_queryset(self):
        return ParkingSpot.objects.filter(status=ParkingSpot.APPROVED).select_related("owner")

    @action(detail=True, methods=["get"], url_path="bookings")
    def bookings(self, request, pk=None):
        spot = self.get_object()
        serializer = BookedIntervalSerializer(active_intervals(spot.pk), many=True)
        return Response({"spot_id": spot.pk, "bookings": serializer.data})
