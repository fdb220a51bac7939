"""Refund service for staff-initiated Stripe refunds.

Only asks Stripe to move the money. The order itself is updated when the
resulting ``charge.refunded`` webhook reaches the fulfillment reconciler, so
refunds issued from the Stripe dashboard and from here follow one path.
"""

import logging

import stripe
from django.core.exceptions import ValidationError

from django_storefront.registration.models import Order
from django_storefront.registration.stripe_client import StripeClient
from django_storefront.registration.stripe_utils import format_amount

logger = logging.getLogger(__name__)


class RefundService:
    """Stateless service for refund operations."""

    @staticmethod
    def create_refund(
        order: Order,
        *,
        amount_cents: int | None = None,
        reason: str = "requested_by_customer",
    ) -> stripe.Refund:
        """Issue a full or partial refund for a Stripe-paid order.

        Args:
            order: The order to refund. Must be confirmed and paid (or
                already partially refunded) through Stripe.
            amount_cents: Partial refund amount in minor units. ``None``
                refunds whatever is left on the PaymentIntent.
            reason: The Stripe refund reason string (e.g.
                ``"requested_by_customer"``, ``"duplicate"``, ``"fraudulent"``).

        Returns:
            The created ``stripe.Refund`` object.

        Raises:
            ValidationError: If the order is not in a refundable state or the
                amount is invalid.
        """
        if order.status != Order.Status.CONFIRMED or order.payment_status not in (
            Order.PaymentStatus.PAID,
            Order.PaymentStatus.REFUNDED,
        ):
            raise ValidationError(
                f"Only confirmed, paid orders can be refunded. This order is "
                f"'{order.get_status_display()}' / '{order.get_payment_status_display()}'."
            )

        if order.payment_method != Order.PaymentMethod.STRIPE or not order.stripe_payment_intent_id:
            raise ValidationError("This order was not paid through Stripe.")

        if amount_cents is not None:
            if amount_cents <= 0:
                raise ValidationError("Refund amount must be greater than zero.")
            if amount_cents > order.total_cents:
                raise ValidationError(
                    f"Refund amount {format_amount(amount_cents, order.currency)} exceeds the order total of "
                    f"{format_amount(order.total_cents, order.currency)}."
                )

        refund = StripeClient().create_refund(order.stripe_payment_intent_id, amount_cents, reason)

        logger.info(
            "Requested refund %s for order %s (%s)",
            refund.id,
            order.reference,
            "full" if amount_cents is None else format_amount(amount_cents, order.currency),
        )
        return refund
