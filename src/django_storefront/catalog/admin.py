"""Django admin configuration for the catalog app."""

from django.contrib import admin

from django_storefront.catalog.models import Offering, TicketType


class TicketTypeInline(admin.TabularInline):
    """Inline editor for an event's ticket types.

    ``quantity_sold`` is read-only; it only moves through confirmed and
    refunded orders.
    """

    model = TicketType
    extra = 0
    fields = ("name", "price_cents", "quantity", "quantity_sold", "max_per_order", "is_active", "order")
    readonly_fields = ("quantity_sold",)


@admin.register(Offering)
class OfferingAdmin(admin.ModelAdmin):
    """Admin interface for events and courses."""

    list_display = ("title", "kind", "status", "is_free", "price_cents", "quantity_sold")
    list_filter = ("kind", "status", "is_free")
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}
    readonly_fields = ("quantity_sold", "created_at", "updated_at")
    inlines = (TicketTypeInline,)


@admin.register(TicketType)
class TicketTypeAdmin(admin.ModelAdmin):
    """Admin interface for ticket types across all events."""

    list_display = ("name", "offering", "price_cents", "quantity", "quantity_sold", "is_active")
    list_filter = ("offering", "is_active")
    search_fields = ("name", "offering__title")
    readonly_fields = ("quantity_sold",)
