"""Django app configuration for the registration app."""

from django.apps import AppConfig


class DjangoStorefrontRegistrationConfig(AppConfig):
    """Configuration for the registration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_storefront.registration"
    label = "storefront_registration"
    verbose_name = "Registration"
