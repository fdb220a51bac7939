"""Django admin configuration for the registration app."""

import stripe
from django.contrib import admin, messages
from django.core.exceptions import ValidationError
from django.db.models import QuerySet
from django.http import HttpRequest

from django_storefront.registration.models import (
    Enrollment,
    EventProcessingException,
    Order,
    OrderLineItem,
    StripeEvent,
)
from django_storefront.registration.services.refund import RefundService
from django_storefront.registration.stripe_utils import format_amount


class OrderLineItemInline(admin.TabularInline):
    """Inline display of order line items within the order admin.

    Line items are immutable snapshots from checkout and are shown read-only.
    """

    model = OrderLineItem
    extra = 0
    can_delete = False
    readonly_fields = (
        "offering",
        "ticket_type",
        "description",
        "quantity",
        "unit_price_cents",
        "line_total_cents",
    )


class EnrollmentInline(admin.TabularInline):
    """Inline display of the course access granted by an order."""

    model = Enrollment
    extra = 0
    can_delete = False
    readonly_fields = ("offering", "email", "enrolled_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin interface for reviewing orders.

    Payment state, totals and Stripe identifiers are read-only; they change
    only through checkout and webhook processing. Refunds are requested with
    the ``refund_orders`` action and land when Stripe reports them. Orders
    cannot be deleted.
    """

    list_display = (
        "reference",
        "offering",
        "email",
        "status",
        "payment_status",
        "payment_method",
        "display_total",
        "created_at",
    )
    list_filter = ("status", "payment_status", "payment_method", "offering")
    search_fields = ("reference", "email", "last_name", "stripe_session_id", "stripe_payment_intent_id")
    readonly_fields = (
        "reference",
        "status",
        "payment_status",
        "payment_method",
        "subtotal_cents",
        "discount_cents",
        "total_cents",
        "currency",
        "stripe_session_id",
        "stripe_payment_intent_id",
        "purchased_at",
        "refunded_at",
        "created_at",
        "updated_at",
    )
    inlines = (OrderLineItemInline, EnrollmentInline)
    actions = ("refund_orders",)

    def has_delete_permission(self, request: HttpRequest, obj: Order | None = None) -> bool:  # noqa: ARG002, D102
        return False

    @admin.display(description="Total", ordering="total_cents")
    def display_total(self, obj: Order) -> str:
        """Render the total with its currency."""
        return format_amount(obj.total_cents, obj.currency)

    @admin.action(description="Refund selected orders in full through Stripe")
    def refund_orders(self, request: HttpRequest, queryset: QuerySet[Order]) -> None:
        """Request a full Stripe refund for each selected order."""
        requested = 0
        for order in queryset:
            try:
                RefundService.create_refund(order)
            except ValidationError as exc:
                self.message_user(request, f"{order.reference}: {' '.join(exc.messages)}", messages.WARNING)
            except stripe.StripeError as exc:
                self.message_user(request, f"{order.reference}: Stripe error: {exc.user_message or exc}", messages.ERROR)
            else:
                requested += 1
        if requested:
            self.message_user(
                request,
                f"Requested refunds for {requested} order(s). Orders update when Stripe confirms the refund.",
                messages.SUCCESS,
            )


@admin.register(StripeEvent)
class StripeEventAdmin(admin.ModelAdmin):
    """Read-only admin for Stripe webhook events."""

    list_display = ("stripe_id", "kind", "processed", "livemode", "created_at")
    list_filter = ("kind", "processed", "livemode")
    search_fields = ("stripe_id",)
    readonly_fields = (
        "stripe_id",
        "kind",
        "livemode",
        "payload",
        "processed",
        "api_version",
        "created_at",
    )

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: StripeEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: StripeEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(EventProcessingException)
class EventProcessingExceptionAdmin(admin.ModelAdmin):
    """Read-only admin for webhook processing errors."""

    list_display = ("message", "event", "created_at")
    list_filter = ("created_at",)
    search_fields = ("message", "event__stripe_id")
    readonly_fields = ("event", "data", "message", "traceback", "created_at")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False
