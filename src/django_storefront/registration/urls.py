"""URL configuration for the registration app.

Includes the checkout endpoints, order status lookups, and the Stripe
webhook endpoint. Mount these under a prefix in the host project::

    urlpatterns = [
        path("store/", include("django_storefront.registration.urls")),
    ]
"""

from django.urls import path

from django_storefront.registration.views import (
    CourseCheckoutView,
    EventCheckoutView,
    OrderDetailView,
    OrderLookupView,
)
from django_storefront.registration.webhooks import stripe_webhook

app_name = "registration"

urlpatterns = [
    path("checkout/", EventCheckoutView.as_view(), name="event-checkout"),
    path("courses/checkout/", CourseCheckoutView.as_view(), name="course-checkout"),
    path("orders/", OrderLookupView.as_view(), name="order-lookup"),
    path("orders/<str:reference>/", OrderDetailView.as_view(), name="order-detail"),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
