from rest_framework import serializers

from accounts.serializers import UserSummarySerializer
from bookings.models import Booking


class BookingPaymentSummarySerializer(serializers.Serializer):
    reference_number = serializers.CharField()
    status = serializers.CharField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField()
    checkout_url = serializers.CharField()


class BookingSerializer(serializers.ModelSerializer):
    spot_id = serializers.IntegerField(read_only=True)
    spot_label = serializers.CharField(source="spot.label", read_only=True)
    requester = UserSummarySerializer(read_only=True)
    payment = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "spot_id",
            "spot_label",
            "requester",
            "start",
            "end",
            "total_price",
            "status",
            "notes",
            "vehicle_plate_number",
            "vehicle_model",
            "vehicle_color",
            "tower",
            "unit_number",
            "payment",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_payment(self, obj):
        payment = getattr(obj, "payment", None)
        if payment is None:
            return None
        return BookingPaymentSummarySerializer(payment).data


class BookingCreateSerializer(serializers.Serializer):
    spot_id = serializers.IntegerField()
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    vehicle_plate_number = serializers.CharField(required=False, allow_blank=True, max_length=20, default="")
    vehicle_model = serializers.CharField(required=False, allow_blank=True, max_length=80, default="")
    vehicle_color = serializers.CharField(required=False, allow_blank=True, max_length=40, default="")
    tower = serializers.CharField(required=False, allow_blank=True, max_length=60, default="")
    unit_number = serializers.CharField(required=False, allow_blank=True, max_length=30, default="")

    def validate(self, attrs):
        if attrs["start"] >= attrs["end"]:
            raise serializers.ValidationError({"end": "End time must be after start time."})
        return attrs
