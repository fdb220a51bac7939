"""Shared fixtures for the django-storefront test suite."""

import hashlib
import hmac
import json
import time

import pytest

from django_storefront.catalog.models import Offering, TicketType
from django_storefront.registration.services.checkout import CustomerInfo

WEBHOOK_SECRET = "whsec_test_storefront"


@pytest.fixture
def event(db):
    return Offering.objects.create(
        kind=Offering.Kind.EVENT,
        title="Spring Summit",
        slug="spring-summit",
        status=Offering.Status.PUBLISHED,
    )


@pytest.fixture
def general_ticket(event):
    return TicketType.objects.create(
        offering=event,
        name="General Admission",
        price_cents=5000,
        quantity=10,
        max_per_order=5,
        order=0,
    )


@pytest.fixture
def vip_ticket(event):
    return TicketType.objects.create(
        offering=event,
        name="VIP",
        price_cents=15000,
        quantity=2,
        max_per_order=2,
        order=1,
    )


@pytest.fixture
def course(db):
    return Offering.objects.create(
        kind=Offering.Kind.COURSE,
        title="Foundations of Delegation",
        slug="foundations",
        status=Offering.Status.PUBLISHED,
        price_cents=4900,
    )


@pytest.fixture
def free_course(db):
    return Offering.objects.create(
        kind=Offering.Kind.COURSE,
        title="Welcome Orientation",
        slug="orientation",
        status=Offering.Status.PUBLISHED,
        is_free=True,
    )


@pytest.fixture
def customer():
    return CustomerInfo(first_name="Ada", last_name="Lovelace", email="ada@example.com")


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs webhook bodies."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode()
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def sign_payload():
    """Return a callable producing a valid ``Stripe-Signature`` header for a body."""
    return _sign


@pytest.fixture
def event_body():
    """Return a factory for Stripe event bodies encoded as bytes."""

    def _build(kind: str, obj: dict, event_id: str = "evt_test_001") -> bytes:
        return json.dumps(
            {
                "id": event_id,
                "object": "event",
                "type": kind,
                "livemode": False,
                "api_version": "2024-12-18",
                "data": {"object": obj},
            }
        ).encode("utf-8")

    return _build
