"""Tests for Stripe webhook handling in django_storefront.registration.webhooks."""

import json
from unittest.mock import patch

import pytest
from django.test import override_settings
from django.urls import reverse

from django_storefront.registration import webhooks
from django_storefront.registration.models import EventProcessingException, Order, StripeEvent
from django_storefront.registration.services.checkout import CheckoutService, TicketSelection

# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def webhook_url():
    return reverse("registration:stripe-webhook")


@pytest.fixture
def order(event, general_ticket, customer):
    return CheckoutService.create_order(event, [TicketSelection(general_ticket.pk, 2)], customer)


@pytest.fixture
def post_event(client, webhook_url, sign_payload):
    """Post a body to the webhook endpoint with a valid signature."""

    def _post(payload: bytes, header: str | None = None):
        return client.post(
            webhook_url,
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=sign_payload(payload) if header is None else header,
        )

    return _post


def _completed_object(order, intent="pi_wh_001"):
    return {
        "id": "cs_wh_001",
        "object": "checkout.session",
        "payment_intent": intent,
        "payment_status": "paid",
        "metadata": {"order_id": str(order.pk), "order_ids": str(order.pk), "reference": order.reference},
    }


# =============================================================================
# TestSignature
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestSignature:
    def test_missing_signature_header_returns_400(self, client, webhook_url, event_body):
        payload = event_body("customer.created", {"id": "cus_1"})

        response = client.post(webhook_url, data=payload, content_type="application/json")

        assert response.status_code == 400
        assert StripeEvent.objects.count() == 0

    def test_bad_signature_returns_400_and_changes_nothing(self, post_event, event_body, order, general_ticket):
        payload = event_body("checkout.session.completed", _completed_object(order))

        response = post_event(payload, header="t=1,v1=deadbeef")

        assert response.status_code == 400
        order.refresh_from_db()
        assert order.status == Order.Status.PENDING
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0
        assert StripeEvent.objects.count() == 0

    def test_signature_from_other_secret_returns_400(self, post_event, event_body, sign_payload):
        payload = event_body("customer.created", {"id": "cus_1"})

        response = post_event(payload, header=sign_payload(payload, secret="whsec_other"))

        assert response.status_code == 400

    def test_signed_but_malformed_event_returns_400(self, post_event):
        payload = json.dumps({"id": "evt_bad", "type": "checkout.session.completed", "data": {}}).encode()

        response = post_event(payload)

        assert response.status_code == 400
        assert StripeEvent.objects.count() == 0

    def test_unconfigured_secret_returns_500(self, post_event, event_body):
        payload = event_body("customer.created", {"id": "cus_1"})

        with override_settings(DJANGO_STOREFRONT={"stripe": {"secret_key": "sk_test_x"}}):
            response = post_event(payload)

        assert response.status_code == 500

    def test_get_is_not_allowed(self, client, webhook_url):
        response = client.get(webhook_url)
        assert response.status_code == 405


# =============================================================================
# TestDelivery
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestDelivery:
    def test_completed_event_confirms_order(self, post_event, event_body, order, general_ticket):
        payload = event_body("checkout.session.completed", _completed_object(order))

        response = post_event(payload)

        assert response.status_code == 200
        order.refresh_from_db()
        assert order.status == Order.Status.CONFIRMED
        assert order.payment_status == Order.PaymentStatus.PAID
        assert order.stripe_payment_intent_id == "pi_wh_001"
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_unpaid_completion_waits_for_async_success(self, post_event, event_body, order, general_ticket):
        unpaid = {**_completed_object(order), "payment_status": "unpaid"}

        response = post_event(event_body("checkout.session.completed", unpaid, event_id="evt_unpaid"))

        assert response.status_code == 200
        order.refresh_from_db()
        assert order.status == Order.Status.PENDING
        assert order.payment_status == Order.PaymentStatus.PENDING
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0

        response = post_event(
            event_body("checkout.session.async_payment_succeeded", _completed_object(order), event_id="evt_settled")
        )

        assert response.status_code == 200
        order.refresh_from_db()
        assert order.status == Order.Status.CONFIRMED
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_event_is_recorded_and_marked_processed(self, post_event, event_body, order):
        payload = event_body("checkout.session.completed", _completed_object(order), event_id="evt_record")

        post_event(payload)

        stored = StripeEvent.objects.get(stripe_id="evt_record")
        assert stored.kind == "checkout.session.completed"
        assert stored.processed is True
        assert stored.livemode is False
        assert stored.api_version == "2024-12-18"
        assert stored.payload["data"]["object"]["id"] == "cs_wh_001"

    def test_duplicate_delivery_counts_once(self, post_event, event_body, order, general_ticket):
        payload = event_body("checkout.session.completed", _completed_object(order))

        first = post_event(payload)
        second = post_event(payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert StripeEvent.objects.count() == 1
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_redelivery_under_new_event_id_is_noop(self, post_event, event_body, order, general_ticket):
        post_event(event_body("checkout.session.completed", _completed_object(order), event_id="evt_a"))
        response = post_event(event_body("checkout.session.completed", _completed_object(order), event_id="evt_b"))

        assert response.status_code == 200
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_unhandled_kind_returns_200(self, post_event, event_body):
        payload = event_body("invoice.paid", {"id": "in_1"}, event_id="evt_invoice")

        response = post_event(payload)

        assert response.status_code == 200
        assert StripeEvent.objects.get(stripe_id="evt_invoice").processed is True

    def test_unknown_order_returns_200(self, post_event, event_body, db):
        obj = {
            "id": "cs_orphan",
            "payment_intent": "pi_orphan",
            "payment_status": "paid",
            "metadata": {"order_id": "424242"},
        }

        response = post_event(event_body("checkout.session.completed", obj))

        assert response.status_code == 200

    def test_expired_event_cancels_order(self, post_event, event_body, order):
        obj = {"id": "cs_wh_001", "metadata": {"order_id": str(order.pk)}}

        response = post_event(event_body("checkout.session.expired", obj))

        assert response.status_code == 200
        order.refresh_from_db()
        assert order.status == Order.Status.CANCELLED

    def test_full_refund_releases_inventory(self, post_event, event_body, order, event, general_ticket):
        post_event(event_body("checkout.session.completed", _completed_object(order), event_id="evt_paid"))
        event.refresh_from_db()
        assert event.quantity_sold == 2
        refund = {"id": "ch_1", "payment_intent": "pi_wh_001", "amount": 10000, "amount_refunded": 10000}

        response = post_event(event_body("charge.refunded", refund, event_id="evt_refund"))

        assert response.status_code == 200
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0
        event.refresh_from_db()
        assert event.quantity_sold == 0
        order.refresh_from_db()
        assert order.payment_status == Order.PaymentStatus.REFUNDED


# =============================================================================
# TestProcessingFailure
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestProcessingFailure:
    def test_exception_returns_500_and_is_recorded(self, post_event, event_body, order):
        payload = event_body("checkout.session.completed", _completed_object(order), event_id="evt_boom")

        with patch.object(webhooks.reconciler, "apply", side_effect=RuntimeError("deliberate test failure")):
            response = post_event(payload)

        assert response.status_code == 500
        stored = StripeEvent.objects.get(stripe_id="evt_boom")
        assert stored.processed is False
        exc = EventProcessingException.objects.get(event=stored)
        assert "deliberate test failure" in exc.traceback
        assert "RuntimeError" in exc.message
        assert len(exc.message) <= 500

    def test_failed_event_is_retried_on_redelivery(self, post_event, event_body, order, general_ticket):
        payload = event_body("checkout.session.completed", _completed_object(order), event_id="evt_retry")

        with patch.object(webhooks.reconciler, "apply", side_effect=RuntimeError("transient")):
            post_event(payload)
        response = post_event(payload)

        assert response.status_code == 200
        assert StripeEvent.objects.get(stripe_id="evt_retry").processed is True
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2
