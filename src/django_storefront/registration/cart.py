"""Client-side ticket cart.

A plain value object the storefront front end keeps in browser storage and
round-trips through JSON. It is never persisted on the server and never
consulted for availability; its only server-facing output is the checkout
request body built by :meth:`Cart.checkout_payload`.
"""

import json
import logging
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class CartItem:
    """A quantity of one ticket type for one event, priced in minor units."""

    offering_id: int
    offering_title: str
    offering_slug: str
    ticket_type_id: int
    ticket_type_name: str
    price_cents: int
    quantity: int = 1
    ticket_description: str = ""

    @property
    def key(self) -> tuple[int, int]:
        """Return the ``(offering_id, ticket_type_id)`` identity of the item."""
        return (self.offering_id, self.ticket_type_id)

    @property
    def line_total_cents(self) -> int:
        """Return ``price_cents * quantity``."""
        return self.price_cents * self.quantity


_INT_FIELDS = ("offering_id", "ticket_type_id", "price_cents", "quantity")
_STR_FIELDS = ("offering_title", "offering_slug", "ticket_type_name", "ticket_description")


def _item_from_entry(entry: object) -> CartItem:
    """Build a cart item from one stored entry.

    Raises:
        TypeError: If the entry is not an object or a field has the wrong type.
        ValueError: If the quantity is below 1 or the price is negative.
    """
    if not isinstance(entry, dict):
        msg = "cart entries must be JSON objects"
        raise TypeError(msg)
    for name in _INT_FIELDS:
        value = entry.get(name, 1 if name == "quantity" else None)
        if isinstance(value, bool) or not isinstance(value, int):
            msg = f"cart entry field '{name}' must be an integer"
            raise TypeError(msg)
    for name in _STR_FIELDS:
        value = entry.get(name, "" if name == "ticket_description" else None)
        if not isinstance(value, str):
            msg = f"cart entry field '{name}' must be a string"
            raise TypeError(msg)
    item = CartItem(**entry)
    if item.quantity < 1:
        msg = "cart entry quantity must be at least 1"
        raise ValueError(msg)
    if item.price_cents < 0:
        msg = "cart entry price_cents must not be negative"
        raise ValueError(msg)
    return item


@dataclass
class Cart:
    """An ordered list of cart items, unique by offering and ticket type."""

    items: list[CartItem] = field(default_factory=list)

    def add_item(self, item: CartItem) -> None:
        """Add ``item``, merging its quantity into an existing line for the same ticket type."""
        for existing in self.items:
            if existing.key == item.key:
                existing.quantity += item.quantity
                return
        self.items.append(item)

    def remove_item(self, offering_id: int, ticket_type_id: int) -> None:
        """Drop the line for a ticket type, if present."""
        self.items = [item for item in self.items if item.key != (offering_id, ticket_type_id)]

    def update_quantity(self, offering_id: int, ticket_type_id: int, quantity: int) -> None:
        """Set a line's quantity. Zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(offering_id, ticket_type_id)
            return
        for item in self.items:
            if item.key == (offering_id, ticket_type_id):
                item.quantity = quantity

    def clear(self) -> None:
        """Empty the cart."""
        self.items = []

    def clear_offering(self, offering_id: int) -> None:
        """Drop every line for one event."""
        self.items = [item for item in self.items if item.offering_id != offering_id]

    def item_count(self) -> int:
        """Return the total number of tickets in the cart."""
        return sum(item.quantity for item in self.items)

    def subtotal_cents(self) -> int:
        """Return the display subtotal. The server reprices at checkout."""
        return sum(item.line_total_cents for item in self.items)

    def items_for_offering(self, offering_id: int) -> list[CartItem]:
        """Return the lines for one event, in cart order."""
        return [item for item in self.items if item.offering_id == offering_id]

    def contains(self, offering_id: int, ticket_type_id: int) -> bool:
        """Return whether the cart has a line for the ticket type."""
        return any(item.key == (offering_id, ticket_type_id) for item in self.items)

    def checkout_payload(self, offering_id: int, customer: dict[str, str]) -> dict[str, object]:
        """Build the ``POST checkout/`` body for one event's lines.

        Args:
            offering_id: The event to check out; other events' lines are left out.
            customer: The customer fields (``first_name``, ``email``, ...).

        Returns:
            The JSON-ready request body.
        """
        return {
            "offering_id": offering_id,
            "tickets": [
                {"ticket_type_id": item.ticket_type_id, "quantity": item.quantity}
                for item in self.items_for_offering(offering_id)
            ],
            "customer": dict(customer),
        }

    def to_json(self) -> str:
        """Serialize the cart for client storage."""
        return json.dumps([asdict(item) for item in self.items])

    @classmethod
    def from_json(cls, raw: str | None) -> "Cart":
        """Restore a cart from client storage.

        Storage is not trusted: anything unreadable yields an empty cart.
        """
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                msg = "cart storage must hold a JSON list"
                raise TypeError(msg)
            cart = cls()
            for entry in data:
                cart.add_item(_item_from_entry(entry))
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable cart storage: %s", exc)
            return cls()
        return cart
