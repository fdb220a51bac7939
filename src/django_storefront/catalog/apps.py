"""Django app configuration for the catalog app."""

from django.apps import AppConfig


class DjangoStorefrontCatalogConfig(AppConfig):
    """Configuration for the catalog app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_storefront.catalog"
    label = "storefront_catalog"
    verbose_name = "Catalog"
