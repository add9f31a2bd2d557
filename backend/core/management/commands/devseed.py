from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from parking.models import ParkingSpot
from payments.services.factory import build_lifecycle


SEED_PASSWORD = "ParkSpot123!"
SUPERUSER_EMAIL = "admin@parkspot.test"
SUPERUSER_PASSWORD = "AdminParkSpot123!"

SPOTS = [
    {
        "title": "Covered slot near lobby",
        "address": "Lumiere Residences, Pasig Blvd",
        "city": "Pasig",
        "tower": "Tower 1",
        "slot_number": "B2-14",
        "price_per_hour": Decimal("60.00"),
        "status": ParkingSpot.APPROVED,
    },
    {
        "title": "Open-air corner slot",
        "address": "Lumiere Residences, Pasig Blvd",
        "city": "Pasig",
        "tower": "Tower 2",
        "slot_number": "P1-03",
        "price_per_hour": Decimal("45.50"),
        "status": ParkingSpot.APPROVED,
    },
    {
        "title": "Tandem slot (awaiting review)",
        "address": "Avida Towers, Shaw Blvd",
        "city": "Mandaluyong",
        "tower": "Tower A",
        "slot_number": "B1-22",
        "price_per_hour": Decimal("40.00"),
        "status": ParkingSpot.PENDING,
    },
]


class Command(BaseCommand):
    help = "Populate the local development database with sample data."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Creating users"))
            owner = self._ensure_user(
                email="owner@parkspot.test",
                first_name="Olivia",
                last_name="Owner",
                display_name="Olivia Owner",
            )
            driver = self._ensure_user(
                email="driver@parkspot.test",
                first_name="Dario",
                last_name="Driver",
                display_name="Dario Driver",
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Ensuring admin superuser"))
            self._ensure_superuser()

            self.stdout.write(self.style.MIGRATE_HEADING("Creating parking spots"))
            spots = [self._ensure_spot(owner, **spot) for spot in SPOTS]

            self.stdout.write(self.style.MIGRATE_HEADING("Cleaning old sample bookings"))
            Booking.objects.filter(spot__in=spots, requester=driver).delete()

        self.stdout.write(self.style.MIGRATE_HEADING("Creating sample booking"))
        start = (timezone.localtime() + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)
        booking = build_lifecycle().create_booking(
            requester=driver,
            spot_id=spots[0].pk,
            start=start,
            end=start + timedelta(hours=2),
            vehicle_plate_number="NAB 1234",
            vehicle_model="Toyota Vios",
            vehicle_color="Silver",
            tower="Tower 3",
            unit_number="12F",
        )
        self.stdout.write(self.style.NOTICE(f"Booking #{booking.pk} is {booking.status}, total {booking.total_price}"))

        self.stdout.write(self.style.SUCCESS("Development seed data created."))
        self.stdout.write(self.style.NOTICE(f"Sample login accounts use password: {SEED_PASSWORD}"))
        self.stdout.write(self.style.NOTICE(f"Admin superuser {SUPERUSER_EMAIL} password: {SUPERUSER_PASSWORD}"))

    def _ensure_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        display_name: str,
    ) -> User:
        user, created = User.objects.get_or_create(
            email=email,
            defaults={
                "username": email,
                "first_name": first_name,
                "last_name": last_name,
                "display_name": display_name,
            },
        )
        if created or not user.has_usable_password():
            user.set_password(SEED_PASSWORD)
            user.save()
        return user

    def _ensure_spot(self, owner: User, *, title: str, **fields) -> ParkingSpot:
        spot, created = ParkingSpot.objects.update_or_create(owner=owner, title=title, defaults=fields)
        if created:
            self.stdout.write(self.style.NOTICE(f"Added spot {spot.label} ({spot.status})"))
        return spot

    def _ensure_superuser(self) -> User:
        user, created = User.objects.get_or_create(
            email=SUPERUSER_EMAIL,
            defaults={
                "username": SUPERUSER_EMAIL,
                "first_name": "Admin",
                "last_name": "User",
                "display_name": "Admin User",
                "is_staff": True,
                "is_superuser": True,
            },
        )
        if created or not user.is_superuser:
            user.is_staff = True
            user.is_superuser = True
            user.set_password(SUPERUSER_PASSWORD)
            user.save()
        return user
