"""Tests for the fulfillment reconciler in django_storefront.registration.services.fulfillment."""

import pytest

from django_storefront.catalog.models import Offering, TicketType
from django_storefront.registration.gateway_events import (
    ChargeRefunded,
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    PaymentIntentFailed,
    UnhandledEvent,
)
from django_storefront.registration.models import Enrollment, Order
from django_storefront.registration.services.checkout import CheckoutService, TicketSelection
from django_storefront.registration.services.fulfillment import FulfillmentReconciler, Outcome
from django_storefront.registration.signals import order_paid, order_refunded


@pytest.fixture
def reconciler():
    return FulfillmentReconciler()


@pytest.fixture
def nearly_sold_out(event):
    return TicketType.objects.create(
        offering=event,
        name="Last Call",
        price_cents=2500,
        quantity=10,
        quantity_sold=9,
        max_per_order=5,
    )


@pytest.fixture
def pending_order(event, general_ticket, customer):
    return CheckoutService.create_order(event, [TicketSelection(general_ticket.pk, 2)], customer)


def _completed(order, event_id="evt_completed_1", intent="pi_test_1", session="cs_test_1"):
    return CheckoutSessionCompleted(
        event_id=event_id,
        session_id=session,
        payment_intent_id=intent,
        order_ids=(str(order.pk),),
    )


def _refunded(amount_refunded, amount=10000, intent="pi_test_1", event_id="evt_refund_1"):
    return ChargeRefunded(
        event_id=event_id,
        payment_intent_id=intent,
        amount=amount,
        amount_refunded=amount_refunded,
    )


# =============================================================================
# checkout.session.completed
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestSessionCompleted:
    def test_confirms_order_and_commits_sale(self, reconciler, pending_order, general_ticket):
        outcome = reconciler.apply(_completed(pending_order))

        assert outcome == Outcome.APPLIED
        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CONFIRMED
        assert pending_order.payment_status == Order.PaymentStatus.PAID
        assert pending_order.stripe_payment_intent_id == "pi_test_1"
        assert pending_order.stripe_session_id == "cs_test_1"
        assert pending_order.purchased_at is not None
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_redelivery_counts_once(self, reconciler, pending_order, general_ticket):
        event = _completed(pending_order)

        assert reconciler.apply(event) == Outcome.APPLIED
        assert reconciler.apply(event) == Outcome.NOOP

        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_fires_order_paid_once(self, reconciler, pending_order):
        received = []

        def _receiver(sender, order, **kwargs):
            received.append(order.pk)

        order_paid.connect(_receiver)
        try:
            reconciler.apply(_completed(pending_order))
            reconciler.apply(_completed(pending_order, event_id="evt_completed_2"))
        finally:
            order_paid.disconnect(_receiver)

        assert received == [pending_order.pk]

    def test_paid_orders_always_carry_intent_id(self, reconciler, pending_order):
        event = CheckoutSessionCompleted(
            event_id="evt_no_intent",
            session_id="cs_test_1",
            payment_intent_id=None,
            order_ids=(str(pending_order.pk),),
        )

        assert reconciler.apply(event) == Outcome.NOOP

        pending_order.refresh_from_db()
        assert pending_order.payment_status == Order.PaymentStatus.PENDING
        for order in Order.objects.filter(payment_status=Order.PaymentStatus.PAID, payment_method="stripe"):
            assert order.stripe_payment_intent_id

    def test_completion_after_payment_failure(self, reconciler, pending_order, general_ticket):
        reconciler.apply(
            PaymentIntentFailed(
                event_id="evt_failed",
                payment_intent_id="pi_test_1",
                order_ids=(str(pending_order.pk),),
                failure_message="Your card was declined.",
            )
        )

        assert reconciler.apply(_completed(pending_order)) == Outcome.APPLIED

        pending_order.refresh_from_db()
        assert pending_order.payment_status == Order.PaymentStatus.PAID
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_unknown_order_is_not_found(self, reconciler, db):
        event = CheckoutSessionCompleted(
            event_id="evt_missing",
            session_id="cs_missing",
            payment_intent_id="pi_missing",
            order_ids=("999999",),
        )
        assert reconciler.apply(event) == Outcome.NOT_FOUND

    def test_missing_metadata_is_not_found(self, reconciler, db):
        event = CheckoutSessionCompleted(
            event_id="evt_bare",
            session_id="cs_bare",
            payment_intent_id="pi_bare",
            order_ids=(),
        )
        assert reconciler.apply(event) == Outcome.NOT_FOUND

    def test_malformed_order_ids_are_skipped(self, reconciler, pending_order):
        event = CheckoutSessionCompleted(
            event_id="evt_mixed",
            session_id="cs_test_1",
            payment_intent_id="pi_test_1",
            order_ids=("not-a-number", str(pending_order.pk)),
        )
        assert reconciler.apply(event) == Outcome.APPLIED

    def test_last_unit_scenario(self, reconciler, event, nearly_sold_out, customer):
        order = CheckoutService.create_order(event, [TicketSelection(nearly_sold_out.pk, 1)], customer)
        assert order.status == Order.Status.PENDING
        assert order.subtotal_cents == 2500

        reconciler.apply(_completed(order))

        nearly_sold_out.refresh_from_db()
        assert nearly_sold_out.quantity_sold == 10
        order.refresh_from_db()
        assert (order.payment_status, order.status) == ("paid", "confirmed")

    def test_concurrent_last_unit_oversells(self, reconciler, event, nearly_sold_out, customer):
        first = CheckoutService.create_order(event, [TicketSelection(nearly_sold_out.pk, 1)], customer)
        second = CheckoutService.create_order(event, [TicketSelection(nearly_sold_out.pk, 1)], customer)

        reconciler.apply(_completed(first, event_id="evt_a", intent="pi_a", session="cs_a"))
        reconciler.apply(_completed(second, event_id="evt_b", intent="pi_b", session="cs_b"))

        nearly_sold_out.refresh_from_db()
        assert nearly_sold_out.quantity_sold == 11

    def test_multi_order_course_checkout(self, reconciler, course, free_course, customer):
        orders = CheckoutService.create_course_orders([course, free_course], customer)
        event = CheckoutSessionCompleted(
            event_id="evt_courses",
            session_id="cs_courses",
            payment_intent_id="pi_courses",
            order_ids=tuple(str(order.pk) for order in orders),
        )

        assert reconciler.apply(event) == Outcome.APPLIED

        assert set(Order.objects.values_list("status", flat=True)) == {Order.Status.CONFIRMED}
        assert set(Order.objects.values_list("stripe_payment_intent_id", flat=True)) == {"pi_courses"}
        assert set(Enrollment.objects.values_list("offering__slug", flat=True)) == {"foundations", "orientation"}
        course.refresh_from_db()
        free_course.refresh_from_db()
        assert course.quantity_sold == 1
        assert free_course.quantity_sold == 1


# =============================================================================
# checkout.session.expired
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestSessionExpired:
    def test_cancels_pending_order(self, reconciler, pending_order, general_ticket):
        event = CheckoutSessionExpired(event_id="evt_exp", session_id="cs_test_1", order_ids=(str(pending_order.pk),))

        assert reconciler.apply(event) == Outcome.APPLIED

        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CANCELLED
        assert pending_order.payment_status == Order.PaymentStatus.FAILED
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0

    def test_late_expiry_after_completion_is_noop(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_completed(pending_order))
        event = CheckoutSessionExpired(event_id="evt_exp", session_id="cs_test_1", order_ids=(str(pending_order.pk),))

        assert reconciler.apply(event) == Outcome.NOOP

        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CONFIRMED
        assert pending_order.payment_status == Order.PaymentStatus.PAID
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_completion_after_expiry_is_noop(self, reconciler, pending_order, general_ticket):
        reconciler.apply(
            CheckoutSessionExpired(event_id="evt_exp", session_id="cs_test_1", order_ids=(str(pending_order.pk),))
        )

        assert reconciler.apply(_completed(pending_order)) == Outcome.NOOP

        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0


# =============================================================================
# checkout.session.async_payment_*
# =============================================================================


def _unpaid_completion(order):
    return CheckoutSessionCompleted(
        event_id="evt_unpaid",
        session_id="cs_test_1",
        payment_intent_id="pi_test_1",
        order_ids=(str(order.pk),),
        payment_status="unpaid",
    )


@pytest.mark.unit
@pytest.mark.django_db
class TestDelayedPayment:
    def test_unpaid_completion_leaves_order_pending(self, reconciler, pending_order, general_ticket):
        received = []

        def _receiver(sender, order, **kwargs):
            received.append(order.pk)

        order_paid.connect(_receiver)
        try:
            assert reconciler.apply(_unpaid_completion(pending_order)) == Outcome.NOOP
        finally:
            order_paid.disconnect(_receiver)

        assert received == []
        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.PENDING
        assert pending_order.payment_status == Order.PaymentStatus.PENDING
        assert pending_order.purchased_at is None
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0

    def test_async_success_confirms_after_unpaid_completion(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_unpaid_completion(pending_order))

        outcome = reconciler.apply(_completed(pending_order, event_id="evt_async_ok"))

        assert outcome == Outcome.APPLIED
        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CONFIRMED
        assert pending_order.payment_status == Order.PaymentStatus.PAID
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_async_failure_cancels_order(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_unpaid_completion(pending_order))

        event = CheckoutSessionExpired(
            event_id="evt_async_fail", session_id="cs_test_1", order_ids=(str(pending_order.pk),)
        )

        outcome = reconciler.apply(event)

        assert outcome == Outcome.APPLIED
        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CANCELLED
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0

    def test_no_payment_required_confirms(self, reconciler, pending_order):
        event = CheckoutSessionCompleted(
            event_id="evt_free_session",
            session_id="cs_test_1",
            payment_intent_id="pi_test_1",
            order_ids=(str(pending_order.pk),),
            payment_status="no_payment_required",
        )

        assert reconciler.apply(event) == Outcome.APPLIED


# =============================================================================
# payment_intent.payment_failed
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestPaymentFailed:
    def test_marks_pending_order_failed_by_metadata(self, reconciler, pending_order):
        event = PaymentIntentFailed(
            event_id="evt_fail",
            payment_intent_id="pi_new",
            order_ids=(str(pending_order.pk),),
            failure_message="Your card was declined.",
        )

        assert reconciler.apply(event) == Outcome.APPLIED

        pending_order.refresh_from_db()
        assert pending_order.payment_status == Order.PaymentStatus.FAILED
        assert pending_order.status == Order.Status.PENDING

    def test_cancelled_order_is_left_alone(self, reconciler, pending_order):
        reconciler.apply(
            CheckoutSessionExpired(event_id="evt_exp", session_id="cs_test_1", order_ids=(str(pending_order.pk),))
        )
        event = PaymentIntentFailed(
            event_id="evt_fail",
            payment_intent_id="pi_new",
            order_ids=(str(pending_order.pk),),
            failure_message="Your card was declined.",
        )

        assert reconciler.apply(event) == Outcome.NOOP

        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CANCELLED

    def test_paid_order_found_by_stored_intent_is_noop(self, reconciler, pending_order):
        reconciler.apply(_completed(pending_order))
        event = PaymentIntentFailed(
            event_id="evt_fail",
            payment_intent_id="pi_test_1",
            order_ids=(),
            failure_message="Retry declined.",
        )

        assert reconciler.apply(event) == Outcome.NOOP

    def test_unknown_intent_is_not_found(self, reconciler, db):
        event = PaymentIntentFailed(
            event_id="evt_fail",
            payment_intent_id="pi_unknown",
            order_ids=(),
            failure_message="No error details",
        )
        assert reconciler.apply(event) == Outcome.NOT_FOUND


# =============================================================================
# charge.refunded
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestChargeRefunded:
    def test_full_refund_cancels_and_releases(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_completed(pending_order))
        received = []

        def _receiver(sender, order, **kwargs):
            received.append(order.pk)

        order_refunded.connect(_receiver)
        try:
            outcome = reconciler.apply(_refunded(amount_refunded=10000))
        finally:
            order_refunded.disconnect(_receiver)

        assert outcome == Outcome.APPLIED
        pending_order.refresh_from_db()
        assert pending_order.payment_status == Order.PaymentStatus.REFUNDED
        assert pending_order.status == Order.Status.CANCELLED
        assert pending_order.refunded_at is not None
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0
        assert received == [pending_order.pk]

    def test_partial_refund_keeps_order_confirmed(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_completed(pending_order))

        assert reconciler.apply(_refunded(amount_refunded=4000)) == Outcome.APPLIED

        pending_order.refresh_from_db()
        assert pending_order.payment_status == Order.PaymentStatus.REFUNDED
        assert pending_order.status == Order.Status.CONFIRMED
        assert pending_order.is_partially_refunded is True
        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 2

    def test_partial_then_full_releases_once(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_completed(pending_order))

        reconciler.apply(_refunded(amount_refunded=4000, event_id="evt_r1"))
        reconciler.apply(_refunded(amount_refunded=10000, event_id="evt_r2"))
        assert reconciler.apply(_refunded(amount_refunded=10000, event_id="evt_r3")) == Outcome.NOOP

        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0
        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.CANCELLED

    def test_refund_never_drives_quantity_negative(self, reconciler, pending_order, general_ticket):
        reconciler.apply(_completed(pending_order))
        TicketType.objects.filter(pk=general_ticket.pk).update(quantity_sold=1)

        reconciler.apply(_refunded(amount_refunded=10000))

        general_ticket.refresh_from_db()
        assert general_ticket.quantity_sold == 0

    def test_refund_of_pending_order_is_noop(self, reconciler, pending_order):
        pending_order.stripe_payment_intent_id = "pi_test_1"
        pending_order.save()

        assert reconciler.apply(_refunded(amount_refunded=10000)) == Outcome.NOOP

        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.PENDING

    def test_refund_for_unknown_intent_is_not_found(self, reconciler, db):
        assert reconciler.apply(_refunded(amount_refunded=100, intent="pi_unknown")) == Outcome.NOT_FOUND

    def test_full_refund_of_course_releases_enrollment_count(self, reconciler, course, customer):
        orders = CheckoutService.create_course_orders([course], customer)
        reconciler.apply(_completed(orders[0], intent="pi_course"))

        reconciler.apply(_refunded(amount_refunded=4900, amount=4900, intent="pi_course"))

        course.refresh_from_db()
        assert course.quantity_sold == 0
        assert Offering.objects.get(pk=course.pk).quantity_sold == 0


# =============================================================================
# Unhandled kinds
# =============================================================================


@pytest.mark.unit
@pytest.mark.django_db
class TestUnhandled:
    def test_unhandled_event_is_ignored(self, reconciler):
        assert reconciler.apply(UnhandledEvent(event_id="evt_x", kind="customer.created")) == Outcome.IGNORED
