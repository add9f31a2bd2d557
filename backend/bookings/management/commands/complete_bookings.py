from django.core.management.base import BaseCommand

from payments.services.factory import build_lifecycle


class Command(BaseCommand):
    help = "Mark confirmed bookings whose end time has passed as completed."

    def handle(self, *args, **options):
        completed = build_lifecycle().complete_elapsed_bookings()
        self.stdout.write(self.style.SUCCESS(f"Completed {completed} booking(s)."))
