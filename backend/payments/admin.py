from django.contrib import admin

from .models import Payment, ProcessedWebhookEvent


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("reference_number", "booking", "gateway", "amount_cents", "currency", "status", "created_at")
    list_filter = ("status", "gateway")
    search_fields = ("reference_number", "external_id", "booking__requester__email")
    readonly_fields = ("reference_number", "external_id", "status", "amount_cents", "metadata", "created_at", "updated_at")


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "provider", "payment", "reported_status", "received_at")
    list_filter = ("provider",)
    search_fields = ("event_id", "payment__reference_number")

    def has_change_permission(self, request, obj=None):
        return False
