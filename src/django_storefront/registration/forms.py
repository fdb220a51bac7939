"""Forms validating the JSON bodies of the checkout endpoints."""

from django import forms

from django_storefront.registration.services.checkout import CustomerInfo, TicketSelection


class CustomerForm(forms.Form):
    """Contact details captured on an order."""

    first_name = forms.CharField(max_length=100)
    last_name = forms.CharField(max_length=100, required=False)
    email = forms.EmailField()
    phone = forms.CharField(max_length=50, required=False)
    company = forms.CharField(max_length=200, required=False)

    def to_customer(self) -> CustomerInfo:
        """Return the cleaned data as a :class:`CustomerInfo`."""
        return CustomerInfo(
            first_name=self.cleaned_data["first_name"],
            last_name=self.cleaned_data.get("last_name", ""),
            email=self.cleaned_data["email"],
            phone=self.cleaned_data.get("phone", ""),
            company=self.cleaned_data.get("company", ""),
        )


class TicketSelectionForm(forms.Form):
    """One ``{ticket_type_id, quantity}`` entry of an event checkout."""

    ticket_type_id = forms.IntegerField(min_value=1)
    quantity = forms.IntegerField(min_value=1)

    def to_selection(self) -> TicketSelection:
        """Return the cleaned data as a :class:`TicketSelection`."""
        return TicketSelection(
            ticket_type_id=self.cleaned_data["ticket_type_id"],
            quantity=self.cleaned_data["quantity"],
        )


class EventCheckoutForm(forms.Form):
    """Top-level fields of ``POST checkout/``."""

    offering_id = forms.IntegerField(min_value=1)


class CourseCheckoutForm(forms.Form):
    """Top-level fields of ``POST courses/checkout/``.

    ``offering_ids`` arrives as a JSON list and is validated in :meth:`clean_offering_ids`.
    """

    offering_ids = forms.JSONField()

    def clean_offering_ids(self) -> list[int]:
        """Ensure ``offering_ids`` is a non-empty list of positive integers."""
        value = self.cleaned_data["offering_ids"]
        if not isinstance(value, list) or not value:
            raise forms.ValidationError("offering_ids must be a non-empty list.")
        ids = []
        for item in value:
            if isinstance(item, bool) or not isinstance(item, int) or item <= 0:
                raise forms.ValidationError("offering_ids must contain positive integer ids.")
            ids.append(item)
        return ids
