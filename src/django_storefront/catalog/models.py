"""Offering and ticket type models for django-storefront."""

from django.db import models


class Offering(models.Model):
    """A sellable event or course.

    Events are sold through their ticket types, each with its own price and
    capacity; the event's ``quantity_sold`` is the attendee count across all
    of its ticket types and ``capacity`` optionally caps it. Courses are sold
    as a single unit priced by ``price_cents``, and ``quantity_sold`` is the
    enrollment count.
    """

    class Kind(models.TextChoices):
        """What kind of thing is being sold."""

        EVENT = "event", "Event"
        COURSE = "course", "Course"

    class Status(models.TextChoices):
        """Publication states. Only published offerings can be purchased."""

        DRAFT = "draft", "Draft"
        PUBLISHED = "published", "Published"
        ARCHIVED = "archived", "Archived"

    kind = models.CharField(max_length=20, choices=Kind.choices, default=Kind.EVENT)
    title = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True)
    description = models.TextField(blank=True, default="")
    is_free = models.BooleanField(
        default=False,
        help_text="Free offerings are fulfilled without contacting the payment gateway.",
    )
    price_cents = models.PositiveIntegerField(
        default=0,
        help_text="Unit price in minor currency units. Used for courses; events are priced per ticket type.",
    )
    capacity = models.PositiveIntegerField(
        default=0,
        help_text="Maximum attendees or enrollments across the whole offering. 0 means unlimited.",
    )
    quantity_sold = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    starts_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["title"]

    def __str__(self) -> str:
        return self.title

    @property
    def is_published(self) -> bool:
        """Return whether the offering is open for purchase."""
        return self.status == self.Status.PUBLISHED

    @property
    def unit_price_cents(self) -> int:
        """Return the effective course price, zero when flagged free."""
        return 0 if self.is_free else self.price_cents


class TicketType(models.Model):
    """A priced variant of an event offering with its own capacity.

    ``quantity_sold`` is an authoritative counter that only the inventory
    ledger mutates. ``quantity_sold <= quantity`` is checked when an order is
    created, not enforced by the database.
    """

    offering = models.ForeignKey(
        Offering,
        on_delete=models.CASCADE,
        related_name="ticket_types",
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    price_cents = models.PositiveIntegerField(default=0)
    quantity = models.PositiveIntegerField(default=0)
    quantity_sold = models.PositiveIntegerField(default=0)
    max_per_order = models.PositiveIntegerField(default=10)
    is_active = models.BooleanField(default=True)
    order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["order", "name"]
        unique_together = [("offering", "name")]

    def __str__(self) -> str:
        return f"{self.name} ({self.offering.slug})"

    @property
    def remaining_quantity(self) -> int:
        """Return the tickets left to sell, never below zero."""
        return max(self.quantity - self.quantity_sold, 0)
