"""Order, enrollment, and gateway event models for django-storefront."""

from django.db import models


class Order(models.Model):
    """A single checkout attempt and its outcome.

    Orders are written ``pending`` before the customer is sent to the hosted
    payment page, so an abandoned checkout still leaves a discoverable record.
    Line items snapshot prices at creation time and are never recomputed from
    the live offering. Orders are never deleted; they are the audit trail.
    """

    class Status(models.TextChoices):
        """Fulfillment state of the order."""

        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentStatus(models.TextChoices):
        """Payment state of the order."""

        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    class PaymentMethod(models.TextChoices):
        """How the order was settled."""

        STRIPE = "stripe", "Stripe"
        FREE = "free", "Free"

    reference = models.CharField(
        max_length=100,
        unique=True,
        help_text='Unique order reference, e.g. "REG-A1B2C3D4".',
    )
    offering = models.ForeignKey(
        "storefront_catalog.Offering",
        on_delete=models.PROTECT,
        related_name="orders",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.STRIPE,
    )
    subtotal_cents = models.PositiveIntegerField(default=0)
    discount_cents = models.PositiveIntegerField(default=0)
    total_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="usd")
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(db_index=True)
    phone = models.CharField(max_length=50, blank=True, default="")
    company = models.CharField(max_length=200, blank=True, default="")
    stripe_session_id = models.CharField(max_length=255, blank=True, default="", db_index=True)
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, default="", db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    purchased_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.reference} ({self.status}/{self.payment_status})"

    @property
    def is_partially_refunded(self) -> bool:
        """Return whether a refund was recorded without cancelling the order."""
        return self.payment_status == self.PaymentStatus.REFUNDED and self.status == self.Status.CONFIRMED

    @property
    def customer_name(self) -> str:
        """Return the customer's display name."""
        return f"{self.first_name} {self.last_name}".strip()


class OrderLineItem(models.Model):
    """A snapshot of one purchased item at checkout time.

    Points at the ticket type for event tickets, or only at the offering for
    course purchases. ``unit_price_cents`` is frozen when the order is created.
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    offering = models.ForeignKey(
        "storefront_catalog.Offering",
        on_delete=models.PROTECT,
        related_name="order_line_items",
    )
    ticket_type = models.ForeignKey(
        "storefront_catalog.TicketType",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="order_line_items",
    )
    description = models.CharField(max_length=300)
    unit_price_cents = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField(default=1)
    line_total_cents = models.PositiveIntegerField()

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.quantity}x {self.description}"


class Enrollment(models.Model):
    """Course access granted by a confirmed order."""

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="enrollments",
    )
    offering = models.ForeignKey(
        "storefront_catalog.Offering",
        on_delete=models.PROTECT,
        related_name="enrollments",
    )
    email = models.EmailField(db_index=True)
    enrolled_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-enrolled_at"]
        unique_together = [("order", "offering")]

    def __str__(self) -> str:
        return f"{self.email} -> {self.offering}"


class StripeEvent(models.Model):
    """A verified Stripe webhook event, stored for idempotency and audit."""

    stripe_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=255, db_index=True)
    livemode = models.BooleanField(default=False)
    payload = models.JSONField(default=dict, blank=True)
    api_version = models.CharField(max_length=100, blank=True, default="")
    processed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} ({self.stripe_id})"


class EventProcessingException(models.Model):
    """A failure captured while applying a Stripe event."""

    event = models.ForeignKey(
        StripeEvent,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="exceptions",
    )
    data = models.TextField(blank=True, default="")
    message = models.CharField(max_length=500)
    traceback = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.event}: {self.message[:80]}"
