"""Stripe client wrapper for hosted checkout, refunds, account lookup and webhook verification.

The client uses the modern ``stripe.StripeClient`` pattern (v1 namespace) bound
to the globally configured secret key and API version.
"""

import json
import logging
from dataclasses import dataclass

import stripe
from django.core.exceptions import ImproperlyConfigured

from django_storefront.registration.gateway_events import GatewayEvent, InvalidGatewayEvent, parse_event
from django_storefront.registration.stripe_utils import obfuscate_key
from django_storefront.settings import get_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GatewayLineItem:
    """One line on the hosted checkout page, priced in minor currency units."""

    name: str
    unit_amount: int
    quantity: int
    metadata: dict[str, str]
    description: str = ""


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """Identifiers of a created hosted checkout session."""

    session_id: str
    session_url: str


@dataclass(frozen=True, slots=True)
class AccountSummary:
    """The Stripe account a secret key belongs to."""

    account_id: str
    display_name: str


class StripeClient:
    """Stripe API client for the storefront.

    Wraps ``stripe.StripeClient`` (v1 namespace) and binds every call to the
    configured secret key and API version.

    Raises:
        ImproperlyConfigured: If no Stripe secret key is configured.
    """

    def __init__(self, secret_key: str | None = None) -> None:
        """Initialize the client from ``DJANGO_STOREFRONT['stripe']``.

        Args:
            secret_key: Use this key instead of the configured one, e.g. to
                check a candidate key before deploying it.
        """
        config = get_config()
        secret_key = secret_key or config.stripe.secret_key
        if not secret_key:
            msg = "DJANGO_STOREFRONT['stripe']['secret_key'] is not configured."
            raise ImproperlyConfigured(msg)

        self.currency = config.currency.lower()
        self.payment_method_types = list(config.stripe.payment_method_types)
        self.client = stripe.StripeClient(
            secret_key,
            stripe_version=config.stripe.api_version,
        )

        logger.debug("Initialized StripeClient with key %s", obfuscate_key(secret_key))

    def create_checkout_session(
        self,
        line_items: list[GatewayLineItem],
        *,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CheckoutSession:
        """Create a hosted Checkout Session for the given line items.

        The metadata is attached both to the session and to the PaymentIntent
        it spawns, so session- and intent-level events can each be mapped back
        to the orders that created them.

        Args:
            line_items: The items to charge for. Amounts are integer minor units.
            customer_email: Prefills the email field on the hosted page.
            success_url: Where Stripe sends the customer after paying.
            cancel_url: Where Stripe sends the customer after backing out.
            metadata: Opaque identifiers (order ids) echoed back in events.
            idempotency_key: Makes retried create calls return the same session.

        Returns:
            The session id and hosted page URL.
        """
        params: dict[str, object] = {
            "mode": "payment",
            "payment_method_types": self.payment_method_types,
            "line_items": [self._line_item_params(item) for item in line_items],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "billing_address_collection": "required",
        }
        session = self.client.v1.checkout.sessions.create(
            params=params,
            options={"idempotency_key": idempotency_key},
        )

        if not session.url:
            msg = f"Stripe returned no URL for checkout session {session.id}"
            raise ValueError(msg)

        logger.info("Created checkout session %s (%d line items)", session.id, len(line_items))
        return CheckoutSession(session_id=session.id, session_url=session.url)

    def _line_item_params(self, item: GatewayLineItem) -> dict[str, object]:
        product_data: dict[str, object] = {"name": item.name, "metadata": item.metadata}
        if item.description:
            product_data["description"] = item.description
        return {
            "price_data": {
                "currency": self.currency,
                "product_data": product_data,
                "unit_amount": item.unit_amount,
            },
            "quantity": item.quantity,
        }

    def retrieve_checkout_session(self, session_id: str) -> stripe.checkout.Session:
        """Fetch a Checkout Session with its PaymentIntent expanded.

        Args:
            session_id: The Stripe Checkout Session ID.

        Returns:
            The ``stripe.checkout.Session`` object.
        """
        return self.client.v1.checkout.sessions.retrieve(
            session_id,
            params={"expand": ["payment_intent"]},
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int | None = None,
        reason: str = "requested_by_customer",
    ) -> stripe.Refund:
        """Create a full or partial refund for a PaymentIntent.

        Args:
            payment_intent_id: The Stripe PaymentIntent ID to refund.
            amount_cents: Optional partial refund amount in minor units. When
                ``None`` the full PaymentIntent amount is refunded.
            reason: The Stripe refund reason string (e.g.
                ``"requested_by_customer"``, ``"duplicate"``, ``"fraudulent"``).

        Returns:
            The created ``stripe.Refund`` object.
        """
        params: dict[str, object] = {
            "payment_intent": payment_intent_id,
            "reason": reason,
        }
        if amount_cents is not None:
            params["amount"] = amount_cents

        return self.client.v1.refunds.create(params=params)

    def retrieve_account(self) -> AccountSummary:
        """Fetch the account behind the secret key to confirm the key works.

        Returns:
            The account id and the best available display name: the business
            name, else the account email, else ``"Connected"``.

        Raises:
            stripe.AuthenticationError: If the key is invalid or revoked.
            stripe.PermissionError: If a restricted key cannot read the account.
        """
        account = self.client.v1.accounts.retrieve_current()
        profile = account.get("business_profile") or {}
        display_name = profile.get("name") or account.get("email") or "Connected"
        logger.info("Stripe key resolved to account %s", account.id)
        return AccountSummary(account_id=account.id, display_name=display_name)


def verify_event(payload: bytes, sig_header: str) -> GatewayEvent:
    """Authenticate a webhook body and return its typed event.

    This is the only gate between the public internet and fulfillment; the
    body is not looked at before its signature checks out.

    Args:
        payload: The raw request body exactly as received.
        sig_header: The ``Stripe-Signature`` header value.

    Returns:
        The parsed :data:`GatewayEvent`.

    Raises:
        ImproperlyConfigured: If no webhook secret is configured.
        stripe.SignatureVerificationError: If the signature does not verify.
        InvalidGatewayEvent: If the signed body is not a usable event.
    """
    config = get_config()
    webhook_secret = config.stripe.webhook_secret
    if not webhook_secret:
        msg = "DJANGO_STOREFRONT['stripe']['webhook_secret'] is not configured."
        raise ImproperlyConfigured(msg)

    try:
        stripe.Webhook.construct_event(
            payload,
            sig_header,
            webhook_secret,
            tolerance=config.stripe.webhook_tolerance,
        )
        # The returned StripeObject is discarded; typed events are built from the verified bytes.
        body = json.loads(payload)
    except ValueError as exc:
        raise InvalidGatewayEvent(str(exc)) from exc

    return parse_event(body)
