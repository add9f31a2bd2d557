from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class ParkingSpot(models.Model):
    """A bookable parking slot listed by its owner."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    INACTIVE = "INACTIVE"
    STATUSES = [
        (PENDING, "Pending review"),
        (APPROVED, "Approved"),
        (REJECTED, "Rejected"),
        (INACTIVE, "Inactive"),
    ]

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="parking_spots",
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=120)
    tower = models.CharField(max_length=60, blank=True)
    slot_number = models.CharField(max_length=30, blank=True)
    price_per_hour = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    rejection_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]

    def __str__(self):
        if self.tower or self.slot_number:
            return f"{self.title} ({self.tower} slot {self.slot_number})".strip()
        return self.title

    @property
    def label(self) -> str:
        return f"{self.tower} Slot {self.slot_number}".strip() if self.slot_number else self.title

    @property
    def is_bookable(self) -> bool:
        return self.status == self.APPROVED
