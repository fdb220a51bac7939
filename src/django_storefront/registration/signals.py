"""Custom signals for the registration app.

Signals:
    order_paid: Sent when an order transitions to paid/confirmed, whether
        through a Stripe webhook or the free-checkout short-circuit.
        Sender: The ``Order`` class.
        Kwargs:
            order: The ``Order`` instance that was paid.
    order_refunded: Sent when a full refund cancels a confirmed order.
        Sender: The ``Order`` class.
        Kwargs:
            order: The ``Order`` instance that was refunded.
"""

from django.dispatch import Signal

order_paid = Signal()
order_refunded = Signal()
