"""Typed configuration for django-storefront.

Reads a single ``DJANGO_STOREFRONT`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from django_storefront.settings import get_config

    config = get_config()
    config.stripe.secret_key
    config.urls.site_url
    config.currency
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe payment gateway configuration."""

    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    api_version: str = "2024-12-18"
    webhook_tolerance: int = 300
    payment_method_types: tuple[str, ...] = ("card",)


@dataclass(frozen=True, slots=True)
class UrlConfig:
    """Redirect targets handed to the hosted checkout page.

    Paths are joined to ``site_url``. ``{slug}`` is replaced with the offering
    slug, ``{reference}`` with the order reference, and Stripe substitutes
    ``{CHECKOUT_SESSION_ID}`` itself.
    """

    site_url: str = "http://localhost:8000"
    event_success_path: str = "/events/{slug}/confirmation?session_id={CHECKOUT_SESSION_ID}"
    event_cancel_path: str = "/events/{slug}"
    event_free_path: str = "/events/{slug}/confirmation?reference={reference}"
    course_success_path: str = "/academy/checkout/success?session_id={CHECKOUT_SESSION_ID}"
    course_cancel_path: str = "/academy/cart?cancelled=true"
    course_free_path: str = "/academy/my-courses?enrolled=true"


@dataclass(frozen=True, slots=True)
class StorefrontConfig:
    """Top-level django-storefront configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    urls: UrlConfig = field(default_factory=UrlConfig)
    order_reference_prefix: str = "REG"
    currency: str = "usd"
    max_tickets_per_checkout: int = 50


@functools.lru_cache(maxsize=1)
def get_config() -> StorefrontConfig:
    """Build and return the storefront configuration.

    Reads ``settings.DJANGO_STOREFRONT`` (a plain dict) and returns a frozen
    :class:`StorefrontConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_STOREFRONT", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_STOREFRONT must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    stripe_data = raw_data.pop("stripe", {})
    urls_data = raw_data.pop("urls", {})
    if not isinstance(stripe_data, Mapping):
        msg = "DJANGO_STOREFRONT['stripe'] must be a mapping (dict-like object)"
        raise TypeError(msg)
    if not isinstance(urls_data, Mapping):
        msg = "DJANGO_STOREFRONT['urls'] must be a mapping (dict-like object)"
        raise TypeError(msg)

    stripe_kwargs = dict(stripe_data)
    if "payment_method_types" in stripe_kwargs:
        stripe_kwargs["payment_method_types"] = tuple(stripe_kwargs["payment_method_types"])

    config = StorefrontConfig(
        stripe=StripeConfig(**stripe_kwargs),
        urls=UrlConfig(**dict(urls_data)),
        **raw_data,
    )
    _validate_storefront_config(config)
    return config


def _validate_storefront_config(config: StorefrontConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "DJANGO_STOREFRONT['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.order_reference_prefix, str) or not config.order_reference_prefix.strip():
        msg = "DJANGO_STOREFRONT['order_reference_prefix'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.max_tickets_per_checkout, int) or config.max_tickets_per_checkout <= 0:
        msg = "DJANGO_STOREFRONT['max_tickets_per_checkout'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.stripe.webhook_tolerance, int) or config.stripe.webhook_tolerance <= 0:
        msg = "DJANGO_STOREFRONT['stripe']['webhook_tolerance'] must be a positive integer"
        raise ValueError(msg)
    if not config.stripe.payment_method_types:
        msg = "DJANGO_STOREFRONT['stripe']['payment_method_types'] must not be empty"
        raise ValueError(msg)
    if not config.urls.site_url.startswith(("http://", "https://")):
        msg = "DJANGO_STOREFRONT['urls']['site_url'] must be an absolute http(s) URL"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_STOREFRONT":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_storefront.settings.clear_config_cache")
