from django.contrib import admin

from .models import ParkingSpot


@admin.register(ParkingSpot)
class ParkingSpotAdmin(admin.ModelAdmin):
    list_display = ("title", "owner", "city", "tower", "slot_number", "price_per_hour", "status")
    list_filter = ("status", "city")
    search_fields = ("title", "address", "owner__email")
    actions = ["approve", "reject"]

    @admin.action(description="Approve selected spots")
    def approve(self, request, queryset):
        updated = queryset.update(status=ParkingSpot.APPROVED, rejection_reason="")
        self.message_user(request, f"{updated} spot(s) approved.")

    @admin.action(description="Reject selected spots")
    def reject(self, request, queryset):
        updated = queryset.update(status=ParkingSpot.REJECTED)
        self.message_user(request, f"{updated} spot(s) rejected.")
