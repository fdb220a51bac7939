"""Typed Stripe webhook events.

Stripe delivers loosely-typed JSON. Only the handful of event kinds that drive
order fulfillment are modelled; every other kind becomes :class:`UnhandledEvent`
so callers can exhaustively branch on a closed set of types::

    event = parse_event(payload)
    if isinstance(event, CheckoutSessionCompleted):
        ...
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"

HANDLED_KINDS = (
    CHECKOUT_SESSION_COMPLETED,
    CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED,
    CHECKOUT_SESSION_EXPIRED,
    CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED,
    PAYMENT_INTENT_FAILED,
    CHARGE_REFUNDED,
)

# Session payment_status values that mean the money has been collected.
SETTLED_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


class InvalidGatewayEvent(ValueError):
    """Raised when an event body cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class CheckoutSessionCompleted:
    """The customer finished the hosted checkout page.

    Built from ``checkout.session.completed`` and from
    ``checkout.session.async_payment_succeeded``. With delayed payment
    methods the first arrives ``unpaid`` and only the second settles it.
    """

    event_id: str
    session_id: str
    payment_intent_id: str | None
    order_ids: tuple[str, ...]
    payment_status: str = "paid"

    @property
    def is_paid(self) -> bool:
        """Return whether the session's payment has been collected."""
        return self.payment_status in SETTLED_PAYMENT_STATUSES


@dataclass(frozen=True, slots=True)
class CheckoutSessionExpired:
    """The hosted checkout session ended without payment.

    Built from ``checkout.session.expired`` and from
    ``checkout.session.async_payment_failed``.
    """

    event_id: str
    session_id: str
    order_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PaymentIntentFailed:
    """A payment attempt was declined or errored."""

    event_id: str
    payment_intent_id: str
    order_ids: tuple[str, ...]
    failure_message: str


@dataclass(frozen=True, slots=True)
class ChargeRefunded:
    """Some or all of a charge was refunded.

    ``amount`` and ``amount_refunded`` are only compared with each other to
    tell a full refund from a partial one.
    """

    event_id: str
    payment_intent_id: str
    amount: int
    amount_refunded: int

    @property
    def is_full_refund(self) -> bool:
        """Return whether the refunded amount covers the whole charge."""
        return self.amount_refunded >= self.amount


@dataclass(frozen=True, slots=True)
class UnhandledEvent:
    """Any event kind that does not affect orders."""

    event_id: str
    kind: str


GatewayEvent = (
    CheckoutSessionCompleted | CheckoutSessionExpired | PaymentIntentFailed | ChargeRefunded | UnhandledEvent
)


def _metadata_order_ids(obj: Mapping[str, Any]) -> tuple[str, ...]:
    """Read the related order ids from an object's metadata.

    ``order_ids`` holds the comma-joined aggregate for multi-order checkouts;
    ``order_id`` is the single-order form.
    """
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping):
        return ()
    aggregate = metadata.get("order_ids")
    if isinstance(aggregate, str) and aggregate.strip():
        return tuple(part.strip() for part in aggregate.split(",") if part.strip())
    single = metadata.get("order_id")
    if isinstance(single, str) and single.strip():
        return (single.strip(),)
    return ()


def _required_str(obj: Mapping[str, Any], key: str, kind: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        msg = f"{kind} event is missing '{key}'"
        raise InvalidGatewayEvent(msg)
    return value


def _required_int(obj: Mapping[str, Any], key: str, kind: str) -> int:
    value = obj.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{kind} event has no integer '{key}'"
        raise InvalidGatewayEvent(msg)
    return value


def _optional_id(value: object) -> str | None:
    """Return an id that Stripe may send either bare or as an expanded object."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, Mapping):
        inner = value.get("id")
        if isinstance(inner, str) and inner:
            return inner
    return None


def parse_event(payload: Mapping[str, Any]) -> GatewayEvent:
    """Build the typed event for a verified Stripe event body.

    Args:
        payload: The decoded event JSON (``{"id", "type", "data": {"object"}}``).

    Returns:
        One of the :data:`GatewayEvent` variants.

    Raises:
        InvalidGatewayEvent: If the envelope, or the object of a handled kind,
            lacks the fields needed to act on it.
    """
    if not isinstance(payload, Mapping):
        msg = "Event body must be a JSON object"
        raise InvalidGatewayEvent(msg)

    event_id = payload.get("id")
    kind = payload.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(kind, str) or not kind:
        msg = "Event body is missing 'id' or 'type'"
        raise InvalidGatewayEvent(msg)

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None

    if kind not in HANDLED_KINDS:
        return UnhandledEvent(event_id=event_id, kind=kind)

    if not isinstance(obj, Mapping):
        msg = f"{kind} event has no data.object"
        raise InvalidGatewayEvent(msg)

    if kind in (CHECKOUT_SESSION_COMPLETED, CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED):
        return CheckoutSessionCompleted(
            event_id=event_id,
            session_id=_required_str(obj, "id", kind),
            payment_intent_id=_optional_id(obj.get("payment_intent")),
            order_ids=_metadata_order_ids(obj),
            payment_status=_required_str(obj, "payment_status", kind),
        )

    if kind in (CHECKOUT_SESSION_EXPIRED, CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED):
        return CheckoutSessionExpired(
            event_id=event_id,
            session_id=_required_str(obj, "id", kind),
            order_ids=_metadata_order_ids(obj),
        )

    if kind == PAYMENT_INTENT_FAILED:
        error = obj.get("last_payment_error")
        message = "No error details"
        if isinstance(error, Mapping) and isinstance(error.get("message"), str):
            message = error["message"]
        return PaymentIntentFailed(
            event_id=event_id,
            payment_intent_id=_required_str(obj, "id", kind),
            order_ids=_metadata_order_ids(obj),
            failure_message=message,
        )

    payment_intent_id = _optional_id(obj.get("payment_intent"))
    if payment_intent_id is None:
        msg = f"{kind} event is missing 'payment_intent'"
        raise InvalidGatewayEvent(msg)
    return ChargeRefunded(
        event_id=event_id,
        payment_intent_id=payment_intent_id,
        amount=_required_int(obj, "amount", kind),
        amount_refunded=_required_int(obj, "amount_refunded", kind),
    )
