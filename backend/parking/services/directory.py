from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from core.exceptions import NotFoundError
from parking.models import ParkingSpot


@dataclass(frozen=True)
class SpotSnapshot:
    """What the booking core needs to know about a spot, read at one instant."""

    id: int
    owner_id: int
    price_per_hour: Decimal
    approval_status: str

    @property
    def is_bookable(self) -> bool:
        return self.approval_status == ParkingSpot.APPROVED


def snapshot(spot: ParkingSpot) -> SpotSnapshot:
    return SpotSnapshot(
        id=spot.pk,
        owner_id=spot.owner_id,
        price_per_hour=spot.price_per_hour,
        approval_status=spot.status,
    )


class ResourceDirectory:
    """Reads parking spots; approval itself happens elsewhere (admin review)."""

    def get_resource(self, spot_id) -> SpotSnapshot:
        try:
            spot = ParkingSpot.objects.only("id", "owner_id", "price_per_hour", "status").get(pk=spot_id)
        except (ParkingSpot.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Parking spot not found.", spot_id=spot_id)
        return snapshot(spot)
