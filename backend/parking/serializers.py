from rest_framework import serializers

from parking.models import ParkingSpot


class ParkingSpotSerializer(serializers.ModelSerializer):
    owner_name = serializers.CharField(source="owner.full_name", read_only=True)
    label = serializers.CharField(read_only=True)

    class Meta:
        model = ParkingSpot
        fields = [
            "id",
            "title",
            "label",
            "description",
            "address",
            "city",
            "tower",
            "slot_number",
            "price_per_hour",
            "owner_name",
        ]


class BookedIntervalSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    status = serializers.CharField()
