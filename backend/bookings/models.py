from django.conf import settings
from django.db import models
from django.db.models import F, Q


class Booking(models.Model):
    """Reservation of a parking spot for the half-open interval [start, end)."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    STATUSES = [
        (PENDING, "Pending payment"),
        (CONFIRMED, "Confirmed"),
        (CANCELLED, "Cancelled"),
        (COMPLETED, "Completed"),
    ]

    ACTIVE_STATUSES = (PENDING, CONFIRMED)
    TERMINAL_STATUSES = (CANCELLED, COMPLETED)

    spot = models.ForeignKey("parking.ParkingSpot", on_delete=models.CASCADE, related_name="bookings")
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    start = models.DateTimeField()
    end = models.DateTimeField()
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    notes = models.TextField(blank=True)
    vehicle_plate_number = models.CharField(max_length=20, blank=True)
    vehicle_model = models.CharField(max_length=80, blank=True)
    vehicle_color = models.CharField(max_length=40, blank=True)
    tower = models.CharField(max_length=60, blank=True)
    unit_number = models.CharField(max_length=30, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["spot", "status", "start"], name="booking_spot_status_start"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(start__lt=F("end")), name="booking_start_before_end"),
        ]

    def __str__(self):
        return f"{self.spot} {self.start:%Y-%m-%d %H:%M}-{self.end:%H:%M} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def total_price_cents(self) -> int:
        return int(self.total_price * 100)
