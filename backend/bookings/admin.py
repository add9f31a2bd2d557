from django.contrib import admin

from payments.models import Payment

from .models import Booking


class PaymentInline(admin.StackedInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = ("reference_number", "external_id", "gateway", "amount_cents", "currency", "status")
    fields = readonly_fields + ("checkout_url",)


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "spot", "requester", "start", "end", "total_price", "status")
    list_filter = ("status",)
    search_fields = ("spot__title", "requester__email", "vehicle_plate_number")
    # Status changes go through the booking and payment services, never the admin form.
    readonly_fields = ("status", "total_price", "created_at", "updated_at")
    inlines = [PaymentInline]
