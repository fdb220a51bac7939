"""Checkout service: the pending-order store.

Validates a selection against the catalog, writes the order as ``pending``
before the customer leaves for the hosted payment page, and hands the gateway
everything it needs to map the payment back. Zero-total checkouts never touch
the gateway and are fulfilled synchronously.
"""

import logging
import secrets
import string
from dataclasses import dataclass, field

from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from django_storefront.catalog.models import Offering, TicketType
from django_storefront.registration.models import Order, OrderLineItem
from django_storefront.registration.services.fulfillment import confirm_order
from django_storefront.registration.services.inventory import reserve_capacity
from django_storefront.registration.stripe_client import GatewayLineItem, StripeClient
from django_storefront.settings import get_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TicketSelection:
    """A requested quantity of one ticket type."""

    ticket_type_id: int
    quantity: int


@dataclass(frozen=True, slots=True)
class CustomerInfo:
    """Contact details captured on the order."""

    first_name: str
    email: str
    last_name: str = ""
    phone: str = ""
    company: str = ""


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    """What the client needs after starting a checkout.

    Free checkouts carry a receipt and a redirect; paid ones carry the hosted
    session to send the customer to.
    """

    is_free: bool
    orders: tuple[Order, ...] = field(default=())
    fulfillment_receipt_id: str = ""
    redirect_url: str = ""
    session_id: str = ""
    session_url: str = ""

    def as_dict(self) -> dict[str, object]:
        """Return the JSON body for the checkout endpoints."""
        if self.is_free:
            return {
                "is_free": True,
                "fulfillment_receipt_id": self.fulfillment_receipt_id,
                "redirect_url": self.redirect_url,
                "order_references": [order.reference for order in self.orders],
            }
        return {
            "is_free": False,
            "session_id": self.session_id,
            "session_url": self.session_url,
            "order_references": [order.reference for order in self.orders],
        }


def _generate_reference() -> str:
    """Generate an order reference using the configured prefix.

    The prefix is set via ``DJANGO_STOREFRONT["order_reference_prefix"]``
    (default ``"REG"``), producing references like ``REG-A1B2C3D4``.
    """
    config = get_config()
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(chars) for _ in range(8))
    return f"{config.order_reference_prefix}-{suffix}"


def _create_order_record(**kwargs: object) -> Order:
    """Insert an order, retrying with a fresh reference on collision."""
    while True:
        try:
            with transaction.atomic():
                return Order.objects.create(reference=_generate_reference(), **kwargs)
        except IntegrityError:
            continue


def _customer_fields(customer: CustomerInfo) -> dict[str, str]:
    first_name = customer.first_name.strip()
    email = customer.email.strip()
    if not first_name:
        raise ValidationError("First name is required.")
    if not email:
        raise ValidationError("Email is required.")
    return {
        "first_name": first_name,
        "last_name": customer.last_name.strip(),
        "email": email,
        "phone": customer.phone.strip(),
        "company": customer.company.strip(),
    }


def _build_url(template: str, **values: str) -> str:
    """Join a configured path template to the site URL.

    Only the named placeholders are substituted; ``{CHECKOUT_SESSION_ID}`` is
    left for Stripe to fill in.
    """
    path = template
    for key, value in values.items():
        path = path.replace("{" + key + "}", value)
    return get_config().urls.site_url.rstrip("/") + path


def _session_metadata(orders: list[Order]) -> dict[str, str]:
    """Build the metadata that maps gateway events back to ``orders``."""
    return {
        "order_id": str(orders[0].pk),
        "order_ids": ",".join(str(order.pk) for order in orders),
        "reference": orders[0].reference,
    }


class CheckoutService:
    """Stateless service for checkout operations.

    Creates pending orders from ticket or course selections and starts the
    hosted payment flow for them.
    """

    @staticmethod
    @transaction.atomic
    def create_order(
        offering: Offering,
        selections: list[TicketSelection],
        customer: CustomerInfo,
    ) -> Order:
        """Create a pending order for tickets to an event.

        Prices are read from the live ticket types and snapshotted into the
        line items. When the subtotal is zero, or the offering is flagged free,
        the order is fulfilled on the spot and returned confirmed.

        Args:
            offering: The published event being purchased.
            selections: The requested ticket types and quantities.
            customer: Contact details for the order.

        Returns:
            The new order, ``pending`` or (for free orders) ``confirmed``.

        Raises:
            ValidationError: If the offering is not purchasable, a selection
                is invalid, or stock is insufficient.
        """
        if not offering.is_published:
            raise ValidationError("This event is not available for purchase.")
        if offering.kind != Offering.Kind.EVENT:
            raise ValidationError("Tickets can only be purchased for events.")
        if not selections:
            raise ValidationError("Select at least one ticket.")

        customer_fields = _customer_fields(customer)

        requested_ids = [selection.ticket_type_id for selection in selections]
        if len(set(requested_ids)) != len(requested_ids):
            raise ValidationError("Each ticket type may only appear once per order.")

        total_quantity = 0
        for selection in selections:
            if selection.quantity <= 0:
                raise ValidationError("Ticket quantities must be at least 1.")
            total_quantity += selection.quantity
        max_tickets = get_config().max_tickets_per_checkout
        if total_quantity > max_tickets:
            raise ValidationError(f"A single order may contain at most {max_tickets} tickets.")

        ticket_types = TicketType.objects.filter(offering=offering).in_bulk(requested_ids)
        lines: list[tuple[TicketType, int, int]] = []
        for selection in selections:
            ticket_type = ticket_types.get(selection.ticket_type_id)
            if ticket_type is None:
                raise ValidationError(f"Ticket type {selection.ticket_type_id} is not sold for this event.")
            reserve_capacity(ticket_type, selection.quantity)
            unit_price = 0 if offering.is_free else ticket_type.price_cents
            lines.append((ticket_type, selection.quantity, unit_price))
        reserve_capacity(offering, total_quantity)

        subtotal = sum(quantity * unit_price for _, quantity, unit_price in lines)

        order = _create_order_record(
            offering=offering,
            status=Order.Status.PENDING,
            payment_status=Order.PaymentStatus.PENDING,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            currency=get_config().currency.lower(),
            **customer_fields,
        )
        for ticket_type, quantity, unit_price in lines:
            OrderLineItem.objects.create(
                order=order,
                offering=offering,
                ticket_type=ticket_type,
                description=ticket_type.name,
                unit_price_cents=unit_price,
                quantity=quantity,
                line_total_cents=unit_price * quantity,
            )

        if subtotal == 0 or offering.is_free:
            confirm_order(order, payment_method=Order.PaymentMethod.FREE)
            logger.info("Free order %s confirmed for %s", order.reference, offering.slug)
        else:
            logger.info("Created pending order %s for %s (%d cents)", order.reference, offering.slug, subtotal)
        return order

    @staticmethod
    @transaction.atomic
    def create_course_orders(offerings: list[Offering], customer: CustomerInfo) -> list[Order]:
        """Create one order per course in a multi-course checkout.

        All orders are written in one transaction. If every course is free the
        orders are confirmed immediately; otherwise all stay pending, including
        zero-priced ones, and are settled together by the same payment.

        Args:
            offerings: The published courses being purchased.
            customer: Contact details for the orders.

        Returns:
            The created orders in the order the courses were given.

        Raises:
            ValidationError: If the list is empty, repeats a course, or names
                an unpublished or sold-out course.
        """
        if not offerings:
            raise ValidationError("Select at least one course.")
        if len({offering.pk for offering in offerings}) != len(offerings):
            raise ValidationError("Each course may only be purchased once per checkout.")

        customer_fields = _customer_fields(customer)

        for offering in offerings:
            if offering.kind != Offering.Kind.COURSE:
                raise ValidationError(f"'{offering.title}' is not a course.")
            if not offering.is_published:
                raise ValidationError(f"'{offering.title}' is not available for purchase.")
            reserve_capacity(offering, 1)

        currency = get_config().currency.lower()
        orders = []
        for offering in offerings:
            price = offering.unit_price_cents
            order = _create_order_record(
                offering=offering,
                status=Order.Status.PENDING,
                payment_status=Order.PaymentStatus.PENDING,
                subtotal_cents=price,
                total_cents=price,
                currency=currency,
                **customer_fields,
            )
            OrderLineItem.objects.create(
                order=order,
                offering=offering,
                description=offering.title,
                unit_price_cents=price,
                quantity=1,
                line_total_cents=price,
            )
            orders.append(order)

        if sum(order.total_cents for order in orders) == 0:
            for order in orders:
                confirm_order(order, payment_method=Order.PaymentMethod.FREE)
            logger.info("Free course orders confirmed: %s", ", ".join(o.reference for o in orders))
        else:
            logger.info("Created pending course orders: %s", ", ".join(o.reference for o in orders))
        return orders

    @staticmethod
    def attach_payment_session(orders: list[Order], session_id: str) -> bool:
        """Record the hosted session id on its orders.

        Best effort: the gateway session already exists and fulfillment keys
        off the order ids in its metadata, so a failure here is logged and
        reported, never raised. Safe to call repeatedly.

        Args:
            orders: The orders the session pays for.
            session_id: The Stripe Checkout Session ID.

        Returns:
            ``True`` if the id was stored, ``False`` on a database error.
        """
        try:
            Order.objects.filter(pk__in=[order.pk for order in orders]).update(
                stripe_session_id=session_id,
                updated_at=timezone.now(),
            )
        except DatabaseError:
            logger.exception(
                "Could not attach session %s to orders %s",
                session_id,
                ", ".join(order.reference for order in orders),
            )
            return False

        for order in orders:
            order.stripe_session_id = session_id
        return True

    @staticmethod
    def start_event_checkout(
        offering: Offering,
        selections: list[TicketSelection],
        customer: CustomerInfo,
    ) -> CheckoutResult:
        """Create the order for an event checkout and start payment.

        Raises:
            ValidationError: As :meth:`create_order`.
            stripe.StripeError: If the gateway rejects the session.
        """
        order = CheckoutService.create_order(offering, selections, customer)
        urls = get_config().urls

        if order.status == Order.Status.CONFIRMED:
            return CheckoutResult(
                is_free=True,
                orders=(order,),
                fulfillment_receipt_id=order.reference,
                redirect_url=_build_url(urls.event_free_path, slug=offering.slug, reference=order.reference),
            )

        line_items = [
            GatewayLineItem(
                name=f"{offering.title} - {line.description}",
                unit_amount=line.unit_price_cents,
                quantity=line.quantity,
                metadata={"order_id": str(order.pk), "ticket_type_id": str(line.ticket_type_id)},
            )
            for line in order.line_items.all()
        ]
        session = StripeClient().create_checkout_session(
            line_items,
            customer_email=order.email,
            success_url=_build_url(urls.event_success_path, slug=offering.slug, reference=order.reference),
            cancel_url=_build_url(urls.event_cancel_path, slug=offering.slug, reference=order.reference),
            metadata=_session_metadata([order]),
            idempotency_key=order.reference,
        )
        CheckoutService.attach_payment_session([order], session.session_id)

        return CheckoutResult(
            is_free=False,
            orders=(order,),
            session_id=session.session_id,
            session_url=session.session_url,
        )

    @staticmethod
    def start_course_checkout(offerings: list[Offering], customer: CustomerInfo) -> CheckoutResult:
        """Create the orders for a course checkout and start payment.

        Zero-priced courses in a mixed cart ride along in the session metadata
        but are not charged as line items.

        Raises:
            ValidationError: As :meth:`create_course_orders`.
            stripe.StripeError: If the gateway rejects the session.
        """
        orders = CheckoutService.create_course_orders(offerings, customer)
        urls = get_config().urls

        if all(order.status == Order.Status.CONFIRMED for order in orders):
            return CheckoutResult(
                is_free=True,
                orders=tuple(orders),
                fulfillment_receipt_id=orders[0].reference,
                redirect_url=_build_url(urls.course_free_path, reference=orders[0].reference),
            )

        line_items = [
            GatewayLineItem(
                name=order.offering.title,
                description=order.offering.description[:500],
                unit_amount=order.total_cents,
                quantity=1,
                metadata={"order_id": str(order.pk), "offering_id": str(order.offering_id)},
            )
            for order in orders
            if order.total_cents > 0
        ]
        session = StripeClient().create_checkout_session(
            line_items,
            customer_email=orders[0].email,
            success_url=_build_url(urls.course_success_path, reference=orders[0].reference),
            cancel_url=_build_url(urls.course_cancel_path, reference=orders[0].reference),
            metadata=_session_metadata(orders),
            idempotency_key=orders[0].reference,
        )
        CheckoutService.attach_payment_session(orders, session.session_id)

        return CheckoutResult(
            is_free=False,
            orders=tuple(orders),
            session_id=session.session_id,
            session_url=session.session_url,
        )
