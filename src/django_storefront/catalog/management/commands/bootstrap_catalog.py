"""Management command to bootstrap the catalog from a TOML configuration file."""

from typing import Any

from django.core.management.base import BaseCommand, CommandError, CommandParser
from django.db import transaction

from django_storefront.catalog.models import Offering, TicketType
from django_storefront.config_loader import load_catalog_config
from django_storefront.registration.stripe_utils import format_amount
from django_storefront.settings import get_config

_OFFERING_FIELDS: tuple[str, ...] = (
    "kind",
    "title",
    "description",
    "is_free",
    "price_cents",
    "capacity",
    "status",
    "starts_at",
)

_TICKET_FIELDS: tuple[str, ...] = (
    "description",
    "price_cents",
    "quantity",
    "max_per_order",
    "is_active",
)


def _pick(data: dict[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    """Return the subset of *data* whose keys are model fields."""
    return {key: data[key] for key in fields if key in data}


class Command(BaseCommand):
    """Bootstrap offerings and ticket types from a TOML configuration file.

    Existing offerings are matched by slug and ticket types by name within
    their offering. ``quantity_sold`` is never written.

    Usage::

        manage.py bootstrap_catalog --config catalog.toml
        manage.py bootstrap_catalog --config catalog.toml --update
        manage.py bootstrap_catalog --config catalog.toml --dry-run
    """

    help = "Create or update offerings and ticket types from a TOML config file."

    def add_arguments(self, parser: CommandParser) -> None:
        """Define the command-line arguments accepted by this command."""
        parser.add_argument(
            "--config",
            required=True,
            help="Path to the catalog TOML configuration file.",
        )
        parser.add_argument(
            "--update",
            action="store_true",
            default=False,
            help="Update existing offerings instead of failing on duplicate slugs.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Validate the config and print what would be created without saving.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the bootstrap command."""
        config_path: str = options["config"]
        update: bool = options["update"]
        dry_run: bool = options["dry_run"]

        try:
            offerings_data = load_catalog_config(config_path)
        except (FileNotFoundError, TypeError, ValueError) as exc:
            raise CommandError(str(exc)) from exc

        if dry_run:
            self._print_dry_run(offerings_data)
            return

        created: list[Offering] = []
        updated: list[Offering] = []
        ticket_count = 0
        with transaction.atomic():
            for offering_data in offerings_data:
                offering, was_created = self._bootstrap_offering(offering_data, update=update)
                (created if was_created else updated).append(offering)
                ticket_count += self._bootstrap_tickets(offering, offering_data["tickets"])

        self.stdout.write("")
        self.stdout.write(self.style.MIGRATE_HEADING("Bootstrap summary:"))
        self.stdout.write(f"  Offerings created:  {len(created)}")
        self.stdout.write(f"  Offerings updated:  {len(updated)}")
        self.stdout.write(f"  Ticket types:       {ticket_count}")

    def _bootstrap_offering(self, data: dict[str, Any], *, update: bool) -> tuple[Offering, bool]:
        """Create or update one offering.

        Raises:
            CommandError: If the slug exists and ``update`` is ``False``.
        """
        slug = data["slug"]
        fields = _pick(data, _OFFERING_FIELDS)

        existing = Offering.objects.filter(slug=slug).first()
        if existing and not update:
            raise CommandError(f"Offering with slug '{slug}' already exists. Use --update to update it.")

        if existing:
            for attr, value in fields.items():
                setattr(existing, attr, value)
            existing.save()
            self.stdout.write(self.style.SUCCESS(f"  Updated offering: {existing.title}"))
            return existing, False

        offering = Offering.objects.create(slug=slug, **fields)
        self.stdout.write(self.style.SUCCESS(f"  Created offering: {offering.title}"))
        return offering, True

    def _bootstrap_tickets(self, offering: Offering, tickets_data: list[dict[str, Any]]) -> int:
        """Create or update the ticket types of an event, matched by name."""
        for position, ticket_data in enumerate(tickets_data):
            fields = _pick(ticket_data, _TICKET_FIELDS)
            fields["order"] = ticket_data.get("order", position)
            ticket, was_created = TicketType.objects.update_or_create(
                offering=offering,
                name=ticket_data["name"],
                defaults=fields,
            )
            verb = "Created" if was_created else "Updated"
            self.stdout.write(self.style.SUCCESS(f"    {verb} ticket: {ticket.name}"))
        return len(tickets_data)

    def _print_dry_run(self, offerings_data: list[dict[str, Any]]) -> None:
        """Print a preview of what would be created without touching the database."""
        currency = get_config().currency
        self.stdout.write(self.style.MIGRATE_HEADING("\n[DRY RUN] No database changes will be made.\n"))
        self.stdout.write(self.style.MIGRATE_HEADING(f"Offerings ({len(offerings_data)}):"))
        for idx, data in enumerate(offerings_data):
            status = data.get("status", Offering.Status.DRAFT)
            self.stdout.write(f"  [{idx}] {data['title']} ({data['slug']}) {data['kind']}, {status}")
            if data["kind"] == "course":
                price = 0 if data.get("is_free") else data.get("price_cents", 0)
                self.stdout.write(f"        price {format_amount(price, currency)}")
            for ticket in data["tickets"]:
                self.stdout.write(
                    f"        - {ticket['name']} {format_amount(ticket['price_cents'], currency)} x{ticket['quantity']}"
                )
        self.stdout.write("")
