"""Stripe webhook endpoint for the registration app.

Verifies the event signature, persists the event for audit and
deduplication, and hands the typed event to the
:class:`~django_storefront.registration.services.fulfillment.FulfillmentReconciler`.

Usage in URL configuration::

    from django_storefront.registration.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook),
    ]
"""

import json
import logging
import traceback

import stripe
from django.core.exceptions import ImproperlyConfigured
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from django_storefront.registration.gateway_events import GatewayEvent, InvalidGatewayEvent
from django_storefront.registration.models import EventProcessingException, StripeEvent
from django_storefront.registration.services.fulfillment import FulfillmentReconciler
from django_storefront.registration.stripe_client import verify_event

logger = logging.getLogger(__name__)

reconciler = FulfillmentReconciler()


def _record_event(event: GatewayEvent, payload: bytes) -> StripeEvent:
    """Persist a verified event, or return the row from an earlier delivery."""
    body = json.loads(payload)
    stripe_event, _created = StripeEvent.objects.get_or_create(
        stripe_id=event.event_id,
        defaults={
            "kind": str(body.get("type", "")),
            "livemode": bool(body.get("livemode", False)),
            "payload": body,
            "api_version": str(body.get("api_version") or ""),
        },
    )
    return stripe_event


def log_exception(stripe_event: StripeEvent) -> None:
    """Capture the current exception to ``EventProcessingException``."""
    tb = traceback.format_exc()
    logger.error(
        "Error processing Stripe event %s (kind=%s): %s",
        stripe_event.stripe_id,
        stripe_event.kind,
        tb,
    )
    EventProcessingException.objects.create(
        event=stripe_event,
        data=json.dumps(stripe_event.payload),
        message=tb.strip().splitlines()[-1][:500],
        traceback=tb,
    )


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """Receive and apply a Stripe webhook event.

    Responds 200 once the event is applied, found to be a no-op, ignored as
    an unhandled kind, or recognized as an already processed delivery. A
    missing or invalid signature, or a malformed body, is rejected with 400
    and changes nothing. Unexpected processing errors respond 500 and leave
    the event unprocessed so Stripe's retry runs it again.

    Args:
        request: The incoming HTTP request from Stripe.

    Returns:
        An empty ``HttpResponse``.
    """
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    if not sig_header:
        logger.warning("Stripe webhook received without a signature header")
        return HttpResponse(status=400)

    try:
        event = verify_event(payload, sig_header)
    except ImproperlyConfigured:
        logger.exception("Stripe webhook cannot be verified")
        return HttpResponse(status=500)
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe webhook signature")
        return HttpResponse(status=400)
    except InvalidGatewayEvent as exc:
        logger.warning("Malformed Stripe webhook payload: %s", exc)
        return HttpResponse(status=400)

    stripe_event = _record_event(event, payload)
    if stripe_event.processed:
        logger.info("Duplicate Stripe event %s, returning 200", stripe_event.stripe_id)
        return HttpResponse(status=200)

    try:
        outcome = reconciler.apply(event)
    except Exception:
        log_exception(stripe_event)
        return HttpResponse(status=500)

    stripe_event.processed = True
    stripe_event.save(update_fields=["processed"])
    logger.info("Stripe event %s (%s): %s", stripe_event.stripe_id, stripe_event.kind, outcome)
    return HttpResponse(status=200)
