from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from core.exceptions import MarketplaceError, PollTimeout
from payments.models import Payment
from payments.services.factory import build_poller


class Command(BaseCommand):
    help = "Poll the payment gateway until a payment reaches a final status."

    def add_arguments(self, parser):
        parser.add_argument("reference_number")
        parser.add_argument(
            "--max-attempts",
            type=int,
            default=None,
            help="Give up after this many status checks (default: PAYMENT_POLL_MAX_ATTEMPTS).",
        )

    def handle(self, *args, **options):
        reference_number = options["reference_number"]
        max_attempts = options["max_attempts"]
        if max_attempts is None:
            max_attempts = settings.PAYMENT_POLL_MAX_ATTEMPTS
        if max_attempts < 1:
            raise CommandError("--max-attempts must be at least 1.")
        if not Payment.objects.filter(reference_number=reference_number).exists():
            raise CommandError(f"Payment {reference_number} not found.")

        self.stdout.write(f"Polling payment {reference_number} (up to {max_attempts} attempts)")
        try:
            final_status = build_poller().poll_until_terminal(reference_number, max_attempts=max_attempts)
        except PollTimeout as exc:
            self.stdout.write(self.style.WARNING(exc.message))
            return
        except MarketplaceError as exc:
            raise CommandError(exc.message) from exc

        booking_status = (
            Payment.objects.filter(reference_number=reference_number).values_list("booking__status", flat=True).first()
        )
        self.stdout.write(
            self.style.SUCCESS(f"Payment {reference_number} is {final_status.value}; booking is {booking_status}.")
        )
