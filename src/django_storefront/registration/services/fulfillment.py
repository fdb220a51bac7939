"""Fulfillment reconciler: applies verified Stripe events to orders.

Each event maps to at most one status transition per order. Transitions run
inside ``transaction.atomic`` with the order row locked, so the status change
and the matching inventory delta commit together, and a redelivered or
out-of-order event finds the order already moved and does nothing.

The reconciler trusts its input: events reach it only after
:func:`~django_storefront.registration.stripe_client.verify_event` accepted
their signature.
"""

import enum
import logging
from collections.abc import Callable, Iterable

from django.db import transaction
from django.utils import timezone

from django_storefront.catalog.models import Offering
from django_storefront.registration.gateway_events import (
    ChargeRefunded,
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    GatewayEvent,
    PaymentIntentFailed,
)
from django_storefront.registration.models import Enrollment, Order
from django_storefront.registration.services.inventory import commit_sale, release_sale
from django_storefront.registration.signals import order_paid, order_refunded

logger = logging.getLogger(__name__)


class Outcome(enum.StrEnum):
    """What applying an event did."""

    APPLIED = "applied"
    NOOP = "noop"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


def confirm_order(
    order: Order,
    *,
    payment_method: str,
    payment_intent_id: str = "",
    session_id: str = "",
) -> None:
    """Move a pending order to paid/confirmed and fulfill it.

    Commits the sale to the inventory ledger, grants course enrollments and
    fires ``order_paid``. Shared by the webhook path and the free-checkout
    short-circuit.

    Args:
        order: The order to confirm. Must be locked for update inside
            ``transaction.atomic`` by the caller.
        payment_method: One of ``Order.PaymentMethod``.
        payment_intent_id: The Stripe PaymentIntent that paid for the order.
        session_id: The Stripe Checkout Session the order was paid through.
    """
    order.status = Order.Status.CONFIRMED
    order.payment_status = Order.PaymentStatus.PAID
    order.payment_method = payment_method
    order.purchased_at = timezone.now()
    update_fields = ["status", "payment_status", "payment_method", "purchased_at", "updated_at"]
    if payment_intent_id:
        order.stripe_payment_intent_id = payment_intent_id
        update_fields.append("stripe_payment_intent_id")
    if session_id:
        order.stripe_session_id = session_id
        update_fields.append("stripe_session_id")
    order.save(update_fields=update_fields)

    commit_sale(order)
    _grant_enrollments(order)
    order_paid.send(sender=Order, order=order)


def _grant_enrollments(order: Order) -> None:
    """Create one enrollment per course line item of a confirmed order."""
    course_lines = order.line_items.filter(
        ticket_type__isnull=True,
        offering__kind=Offering.Kind.COURSE,
    )
    for line in course_lines:
        Enrollment.objects.get_or_create(
            order=order,
            offering_id=line.offering_id,
            defaults={"email": order.email},
        )


def _order_pks(order_ids: Iterable[str]) -> list[int]:
    """Turn metadata order ids into primary keys, dropping anything non-numeric."""
    pks = []
    for value in order_ids:
        if value.isdigit():
            pks.append(int(value))
        else:
            logger.warning("Ignoring malformed order id %r in Stripe metadata", value)
    return pks


def _combine(outcomes: list[Outcome]) -> Outcome:
    """Summarize per-order outcomes into one result for the event."""
    if Outcome.APPLIED in outcomes:
        return Outcome.APPLIED
    if Outcome.NOOP in outcomes:
        return Outcome.NOOP
    return Outcome.NOT_FOUND


class FulfillmentReconciler:
    """Applies gateway events to orders and the inventory ledger.

    Stateless; a single instance may be shared between requests.
    """

    def apply(self, event: GatewayEvent) -> Outcome:
        """Apply one verified event.

        Args:
            event: A typed event from
                :func:`~django_storefront.registration.gateway_events.parse_event`.

        Returns:
            ``APPLIED`` if at least one order moved, ``NOOP`` if the related
            orders were already past the transition, ``NOT_FOUND`` if no
            related order exists, ``IGNORED`` for kinds that do not touch
            orders.
        """
        if isinstance(event, CheckoutSessionCompleted):
            return self._session_completed(event)
        if isinstance(event, CheckoutSessionExpired):
            return self._session_expired(event)
        if isinstance(event, PaymentIntentFailed):
            return self._payment_failed(event)
        if isinstance(event, ChargeRefunded):
            return self._charge_refunded(event)

        logger.debug("Ignoring Stripe event %s of kind %s", event.event_id, event.kind)
        return Outcome.IGNORED

    def _transition_each(self, pks: list[int], transition: Callable[[Order], Outcome]) -> Outcome:
        """Run ``transition`` on each order under its own row lock."""
        outcomes = []
        for pk in pks:
            with transaction.atomic():
                order = Order.objects.select_for_update().filter(pk=pk).first()
                if order is None:
                    logger.warning("Order %s referenced by Stripe metadata does not exist", pk)
                    outcomes.append(Outcome.NOT_FOUND)
                    continue
                outcomes.append(transition(order))
        return _combine(outcomes)

    # ---- checkout.session.completed / async_payment_succeeded ----

    def _session_completed(self, event: CheckoutSessionCompleted) -> Outcome:
        if not event.is_paid:
            logger.info(
                "Checkout session %s completed with payment_status=%s; awaiting settlement",
                event.session_id,
                event.payment_status,
            )
            return Outcome.NOOP
        if not event.payment_intent_id:
            logger.warning(
                "Checkout session %s completed without a payment intent; leaving its orders pending",
                event.session_id,
            )
            return Outcome.NOOP

        pks = _order_pks(event.order_ids)
        if not pks:
            logger.warning("Checkout session %s carries no order ids", event.session_id)
            return Outcome.NOT_FOUND

        def complete(order: Order) -> Outcome:
            if order.status != Order.Status.PENDING or order.payment_status not in (
                Order.PaymentStatus.PENDING,
                Order.PaymentStatus.FAILED,
            ):
                logger.info(
                    "Order %s is %s/%s; ignoring completion of session %s",
                    order.reference,
                    order.status,
                    order.payment_status,
                    event.session_id,
                )
                return Outcome.NOOP
            confirm_order(
                order,
                payment_method=Order.PaymentMethod.STRIPE,
                payment_intent_id=event.payment_intent_id,
                session_id=event.session_id,
            )
            logger.info("Order %s confirmed by session %s", order.reference, event.session_id)
            return Outcome.APPLIED

        return self._transition_each(pks, complete)

    # ---- checkout.session.expired / async_payment_failed ----

    def _session_expired(self, event: CheckoutSessionExpired) -> Outcome:
        pks = _order_pks(event.order_ids)
        if not pks:
            logger.warning("Expired checkout session %s carries no order ids", event.session_id)
            return Outcome.NOT_FOUND

        def expire(order: Order) -> Outcome:
            if order.status != Order.Status.PENDING:
                return Outcome.NOOP
            order.status = Order.Status.CANCELLED
            order.payment_status = Order.PaymentStatus.FAILED
            order.save(update_fields=["status", "payment_status", "updated_at"])
            logger.info("Order %s cancelled; session %s expired", order.reference, event.session_id)
            return Outcome.APPLIED

        return self._transition_each(pks, expire)

    # ---- payment_intent.payment_failed ----

    def _payment_failed(self, event: PaymentIntentFailed) -> Outcome:
        pks = list(
            Order.objects.filter(stripe_payment_intent_id=event.payment_intent_id).values_list("pk", flat=True)
        )
        if not pks:
            pks = _order_pks(event.order_ids)
        if not pks:
            logger.warning("No order found for failed payment intent %s", event.payment_intent_id)
            return Outcome.NOT_FOUND

        def fail(order: Order) -> Outcome:
            if order.payment_status != Order.PaymentStatus.PENDING:
                return Outcome.NOOP
            order.payment_status = Order.PaymentStatus.FAILED
            order.save(update_fields=["payment_status", "updated_at"])
            logger.info(
                "Payment failed for order %s (intent %s): %s",
                order.reference,
                event.payment_intent_id,
                event.failure_message,
            )
            return Outcome.APPLIED

        return self._transition_each(pks, fail)

    # ---- charge.refunded ----

    def _charge_refunded(self, event: ChargeRefunded) -> Outcome:
        pks = list(
            Order.objects.filter(stripe_payment_intent_id=event.payment_intent_id).values_list("pk", flat=True)
        )
        if not pks:
            logger.warning("No order found for refunded payment intent %s", event.payment_intent_id)
            return Outcome.NOT_FOUND

        def refund(order: Order) -> Outcome:
            if order.status != Order.Status.CONFIRMED or order.payment_status not in (
                Order.PaymentStatus.PAID,
                Order.PaymentStatus.REFUNDED,
            ):
                return Outcome.NOOP
            if not event.is_full_refund and order.payment_status == Order.PaymentStatus.REFUNDED:
                return Outcome.NOOP

            order.payment_status = Order.PaymentStatus.REFUNDED
            order.refunded_at = timezone.now()
            update_fields = ["payment_status", "refunded_at", "updated_at"]
            if not event.is_full_refund:
                order.save(update_fields=update_fields)
                logger.info(
                    "Order %s partially refunded (%d of %d)",
                    order.reference,
                    event.amount_refunded,
                    event.amount,
                )
                return Outcome.APPLIED

            order.status = Order.Status.CANCELLED
            update_fields.append("status")
            order.save(update_fields=update_fields)
            release_sale(order)
            order_refunded.send(sender=Order, order=order)
            logger.info("Order %s fully refunded and cancelled", order.reference)
            return Outcome.APPLIED

        return self._transition_each(pks, refund)
