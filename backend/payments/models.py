from django.db import models


class Payment(models.Model):
    """Gateway charge for a booking; reference_number is shared with the gateway."""

    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    STATUSES = [
        (PENDING, "Pending"),
        (SUCCEEDED, "Succeeded"),
        (FAILED, "Failed"),
        (CANCELLED, "Cancelled"),
    ]
    TERMINAL_STATUSES = (SUCCEEDED, FAILED, CANCELLED)

    booking = models.OneToOneField("bookings.Booking", on_delete=models.CASCADE, related_name="payment")
    reference_number = models.CharField(max_length=120, unique=True)
    external_id = models.CharField(max_length=200, blank=True, db_index=True)
    gateway = models.CharField(max_length=30, blank=True)
    amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default="PHP")
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    description = models.CharField(max_length=255, blank=True)
    checkout_url = models.URLField(max_length=500, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.reference_number} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class ProcessedWebhookEvent(models.Model):
    """Webhook event ids already applied. Rows are inserted once and never updated."""

    event_id = models.CharField(max_length=200, unique=True)
    provider = models.CharField(max_length=30, blank=True)
    payment = models.ForeignKey(
        "Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_events",
    )
    reported_status = models.CharField(max_length=40, blank=True)
    received_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-received_at"]

    def __str__(self):
        return self.event_id
