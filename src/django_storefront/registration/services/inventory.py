"""Inventory ledger for ticket types and course offerings.

Availability is checked when an order is created (advisory only: pending
orders do not hold stock), and ``quantity_sold`` moves only when an order is
confirmed or fully refunded. Counters are updated with ``F()`` expressions so
concurrent webhook deliveries never lose an increment to a read-modify-write
race.

Line items that reference a ticket type count against that ticket type and
against their event, whose ``quantity_sold`` is the attendee count checked
against the event-wide ``capacity``. Line items without a ticket type (course
purchases) count against the offering itself.
"""

import logging
from collections import Counter

from django.core.exceptions import ValidationError
from django.db.models import Case, F, Value, When

from django_storefront.catalog.models import Offering, TicketType
from django_storefront.registration.models import Order

logger = logging.getLogger(__name__)


def available_quantity(item: TicketType | Offering) -> int | None:
    """Return how many more units can be sold.

    Args:
        item: A ticket type, or an offering checked against its own capacity.

    Returns:
        The remaining count (never negative), or ``None`` for an offering with
        unlimited capacity.
    """
    if isinstance(item, TicketType):
        return item.remaining_quantity
    if item.capacity == 0:
        return None
    return max(item.capacity - item.quantity_sold, 0)


def reserve_capacity(item: TicketType | Offering, quantity: int) -> None:
    """Check that ``quantity`` units of ``item`` may be ordered.

    Nothing is held: two concurrent orders for the last unit both pass, and
    both are confirmed if both are paid. ``quantity_sold`` is not touched.

    Args:
        item: A ticket type, or an offering checked against its own capacity.
        quantity: The requested number of units.

    Raises:
        ValidationError: If the item is inactive, sold out or short of stock,
            or the request exceeds the per-order cap.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1.")

    if isinstance(item, TicketType):
        if not item.is_active:
            raise ValidationError(f"Ticket type '{item.name}' is not available.")
        available = available_quantity(item)
        if available is not None and quantity > available:
            if available == 0:
                raise ValidationError(f"Ticket type '{item.name}' is sold out.")
            raise ValidationError(f"Only {available} tickets available for '{item.name}'.")
        if quantity > item.max_per_order:
            raise ValidationError(f"Maximum {item.max_per_order} tickets per order for '{item.name}'.")
        return

    available = available_quantity(item)
    if available is not None and quantity > available:
        if available == 0:
            raise ValidationError(f"'{item.title}' is sold out.")
        raise ValidationError(f"Only {available} places left for '{item.title}'.")


def _sale_quantities(order: Order) -> tuple[Counter[int], Counter[int]]:
    """Sum the order's line item quantities per ticket type and per offering.

    Every line counts toward its offering; ticket lines also count toward
    their ticket type.
    """
    by_ticket_type: Counter[int] = Counter()
    by_offering: Counter[int] = Counter()
    for line in order.line_items.all():
        if line.ticket_type_id is not None:
            by_ticket_type[line.ticket_type_id] += line.quantity
        by_offering[line.offering_id] += line.quantity
    return by_ticket_type, by_offering


def commit_sale(order: Order) -> None:
    """Add a confirmed order's quantities to ``quantity_sold``.

    Must only run once per order, on its transition to confirmed. The caller
    is expected to hold the order's row lock inside ``transaction.atomic``.

    Capacity is not re-checked here; an oversold counter is logged.
    """
    by_ticket_type, by_offering = _sale_quantities(order)

    for ticket_type_id, quantity in by_ticket_type.items():
        TicketType.objects.filter(pk=ticket_type_id).update(quantity_sold=F("quantity_sold") + quantity)
    for offering_id, quantity in by_offering.items():
        Offering.objects.filter(pk=offering_id).update(quantity_sold=F("quantity_sold") + quantity)

    oversold_tickets = TicketType.objects.filter(
        pk__in=list(by_ticket_type),
        quantity_sold__gt=F("quantity"),
    )
    for ticket_type in oversold_tickets:
        logger.warning(
            "Ticket type %s oversold by order %s: %d sold of %d",
            ticket_type.pk,
            order.reference,
            ticket_type.quantity_sold,
            ticket_type.quantity,
        )
    oversold_offerings = Offering.objects.filter(
        pk__in=list(by_offering),
        capacity__gt=0,
        quantity_sold__gt=F("capacity"),
    )
    for offering in oversold_offerings:
        logger.warning(
            "Offering %s oversold by order %s: %d sold of %d",
            offering.slug,
            order.reference,
            offering.quantity_sold,
            offering.capacity,
        )


def _decrement(quantity: int) -> Case:
    """Build an expression subtracting ``quantity`` from ``quantity_sold``, floored at zero."""
    return Case(
        When(quantity_sold__gte=quantity, then=F("quantity_sold") - quantity),
        default=Value(0),
    )


def release_sale(order: Order) -> None:
    """Return a fully refunded order's quantities to stock.

    Must only run once per order, on its transition from confirmed to
    cancelled. Counters never go below zero.
    """
    by_ticket_type, by_offering = _sale_quantities(order)

    for ticket_type_id, quantity in by_ticket_type.items():
        TicketType.objects.filter(pk=ticket_type_id).update(quantity_sold=_decrement(quantity))
    for offering_id, quantity in by_offering.items():
        Offering.objects.filter(pk=offering_id).update(quantity_sold=_decrement(quantity))
