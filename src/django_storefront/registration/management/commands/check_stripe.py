"""Management command to verify that a Stripe secret key can reach its account.

Usage::

    # Check the key configured in DJANGO_STOREFRONT['stripe']
    manage.py check_stripe

    # Check a candidate key before putting it in settings
    manage.py check_stripe --secret-key sk_live_...
"""

from typing import Any

import stripe
from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_storefront.registration.stripe_client import StripeClient
from django_storefront.registration.stripe_utils import obfuscate_key


class Command(BaseCommand):
    """Look up the Stripe account behind a secret key."""

    help = "Verify a Stripe secret key by fetching the account it belongs to."

    def add_arguments(self, parser: CommandParser) -> None:
        """Register command-line arguments."""
        parser.add_argument(
            "--secret-key",
            default=None,
            help="Key to check instead of the configured one.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the key check."""
        secret_key: str | None = options["secret_key"]

        try:
            client = StripeClient(secret_key=secret_key)
        except ImproperlyConfigured as exc:
            raise CommandError(str(exc)) from None

        key_label = obfuscate_key(secret_key) if secret_key else "the configured key"
        try:
            account = client.retrieve_account()
        except stripe.AuthenticationError:
            msg = f"Invalid API key ({key_label})"
            raise CommandError(msg) from None
        except stripe.PermissionError:
            msg = f"Insufficient permissions ({key_label})"
            raise CommandError(msg) from None
        except stripe.StripeError as exc:
            msg = f"Connection failed: {exc.user_message or exc}"
            raise CommandError(msg) from None

        self.stdout.write(self.style.SUCCESS(f"Connected to {account.display_name} ({account.account_id})"))
