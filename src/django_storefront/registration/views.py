"""JSON views for the storefront checkout flow.

The front end posts a selection and receives either a free-order receipt or
the hosted payment page to redirect to. After payment, the success page polls
the order status endpoints until the webhook has confirmed the order.
"""

import json
import logging
from collections.abc import Callable

import stripe
from django import forms
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db import DatabaseError
from django.http import HttpRequest, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from django_storefront.catalog.models import Offering
from django_storefront.registration.forms import (
    CourseCheckoutForm,
    CustomerForm,
    EventCheckoutForm,
    TicketSelectionForm,
)
from django_storefront.registration.models import Order
from django_storefront.registration.services.checkout import CheckoutResult, CheckoutService

logger = logging.getLogger(__name__)


class _BadRequest(Exception):
    """Raised while reading a request body that cannot be used."""


def _read_json(request: HttpRequest) -> dict:
    try:
        body = json.loads(request.body)
    except ValueError as exc:
        raise _BadRequest("Request body must be valid JSON.") from exc
    if not isinstance(body, dict):
        raise _BadRequest("Request body must be a JSON object.")
    return body


def _check_form(form: forms.Form, prefix: str = "") -> None:
    """Raise ``_BadRequest`` with the first field error of an invalid form."""
    if form.is_valid():
        return
    field, errors = next(iter(form.errors.items()))
    raise _BadRequest(f"{prefix}{field}: {errors[0]}")


def _customer_from(body: dict) -> CustomerForm:
    customer = body.get("customer")
    if not isinstance(customer, dict):
        raise _BadRequest("customer must be a JSON object.")
    form = CustomerForm(customer)
    _check_form(form, prefix="customer.")
    return form


def _run_checkout(start: Callable[[], CheckoutResult]) -> JsonResponse:
    """Run a checkout and map its failures to HTTP status codes."""
    try:
        result = start()
    except ValidationError as exc:
        return JsonResponse({"error": " ".join(exc.messages)}, status=400)
    except stripe.StripeError:
        logger.exception("Stripe rejected the checkout session")
        return JsonResponse({"error": "The payment provider is unavailable. Please try again."}, status=502)
    except (DatabaseError, ImproperlyConfigured, ValueError):
        logger.exception("Checkout failed")
        return JsonResponse({"error": "Checkout failed. Please try again."}, status=500)
    return JsonResponse(result.as_dict())


@method_decorator(csrf_exempt, name="dispatch")
class EventCheckoutView(View):
    """Start a checkout for tickets to one event.

    Body::

        {"offering_id": 1,
         "tickets": [{"ticket_type_id": 3, "quantity": 2}],
         "customer": {"first_name": "Ada", "email": "ada@example.com"}}
    """

    http_method_names = ["post"]

    def post(self, request: HttpRequest) -> JsonResponse:
        """Create the order and return a free receipt or a hosted session."""
        try:
            body = _read_json(request)
            form = EventCheckoutForm(body)
            _check_form(form)
            customer = _customer_from(body).to_customer()

            tickets = body.get("tickets")
            if not isinstance(tickets, list) or not tickets:
                raise _BadRequest("tickets must be a non-empty list.")
            selections = []
            for index, ticket in enumerate(tickets):
                if not isinstance(ticket, dict):
                    raise _BadRequest(f"tickets[{index}] must be a JSON object.")
                ticket_form = TicketSelectionForm(ticket)
                _check_form(ticket_form, prefix=f"tickets[{index}].")
                selections.append(ticket_form.to_selection())
        except _BadRequest as exc:
            return JsonResponse({"error": str(exc)}, status=400)

        offering = Offering.objects.filter(pk=form.cleaned_data["offering_id"]).first()
        if offering is None:
            return JsonResponse({"error": "Event not found."}, status=404)

        return _run_checkout(lambda: CheckoutService.start_event_checkout(offering, selections, customer))


@method_decorator(csrf_exempt, name="dispatch")
class CourseCheckoutView(View):
    """Start a checkout for one or more courses.

    Body::

        {"offering_ids": [4, 7],
         "customer": {"first_name": "Ada", "email": "ada@example.com"}}
    """

    http_method_names = ["post"]

    def post(self, request: HttpRequest) -> JsonResponse:
        """Create one order per course and return a free receipt or a hosted session."""
        try:
            body = _read_json(request)
            form = CourseCheckoutForm({"offering_ids": body.get("offering_ids")})
            _check_form(form)
            customer = _customer_from(body).to_customer()
        except _BadRequest as exc:
            return JsonResponse({"error": str(exc)}, status=400)

        offering_ids = form.cleaned_data["offering_ids"]
        found = Offering.objects.in_bulk(offering_ids)
        missing = [pk for pk in offering_ids if pk not in found]
        if missing:
            return JsonResponse({"error": f"Course not found: {missing[0]}."}, status=404)
        offerings = [found[pk] for pk in offering_ids]

        return _run_checkout(lambda: CheckoutService.start_course_checkout(offerings, customer))


def _serialize_order(order: Order) -> dict[str, object]:
    return {
        "reference": order.reference,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "is_partially_refunded": order.is_partially_refunded,
        "offering": {"slug": order.offering.slug, "title": order.offering.title, "kind": order.offering.kind},
        "total_cents": order.total_cents,
        "currency": order.currency,
        "first_name": order.first_name,
        "purchased_at": order.purchased_at.isoformat() if order.purchased_at else None,
        "line_items": [
            {
                "description": line.description,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "line_total_cents": line.line_total_cents,
            }
            for line in order.line_items.all()
        ],
    }


class OrderDetailView(View):
    """Status of one order, looked up by its reference."""

    http_method_names = ["get"]

    def get(self, _request: HttpRequest, reference: str) -> JsonResponse:
        """Return the order as JSON, or 404."""
        order = (
            Order.objects.select_related("offering").prefetch_related("line_items").filter(reference=reference).first()
        )
        if order is None:
            return JsonResponse({"error": "Order not found."}, status=404)
        return JsonResponse(_serialize_order(order))


class OrderLookupView(View):
    """Status of the orders paid through one checkout session.

    Used by the success page, which only knows the ``session_id`` Stripe
    appended to the redirect URL.
    """

    http_method_names = ["get"]

    def get(self, request: HttpRequest) -> JsonResponse:
        """Return ``{"orders": [...]}`` for ``?session_id=``, or 400/404."""
        session_id = request.GET.get("session_id", "").strip()
        if not session_id:
            return JsonResponse({"error": "session_id is required."}, status=400)

        orders = list(
            Order.objects.select_related("offering")
            .prefetch_related("line_items")
            .filter(stripe_session_id=session_id)
            .order_by("pk")
        )
        if not orders:
            return JsonResponse({"error": "No orders found for this session."}, status=404)
        return JsonResponse({"orders": [_serialize_order(order) for order in orders]})
