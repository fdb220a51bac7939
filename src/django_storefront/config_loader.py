"""TOML loader for catalog bootstrap configuration.

Loads and validates a catalog TOML file (see ``catalog.example.toml``) so that
events, their ticket types, and courses can be created programmatically::

    [[offerings]]
    title = "Spring Summit"
    kind = "event"
    status = "published"

      [[offerings.tickets]]
      name = "General Admission"
      price_cents = 9900
      quantity = 200

    [[offerings]]
    title = "Foundations Course"
    kind = "course"
    price_cents = 4900
"""

import re
import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Any

_KINDS: set[str] = {"event", "course"}
_STATUSES: set[str] = {"draft", "published", "archived"}
_REQUIRED_OFFERING_FIELDS: set[str] = {"title"}
_REQUIRED_TICKET_FIELDS: set[str] = {"name", "price_cents", "quantity"}
_NON_NEGATIVE_OFFERING_FIELDS: tuple[str, ...] = ("price_cents", "capacity")
_NON_NEGATIVE_TICKET_FIELDS: tuple[str, ...] = ("price_cents", "quantity", "max_per_order")

_SLUG_RE = re.compile(r"[^\w\s-]")
_WHITESPACE_RE = re.compile(r"[-\s]+")


def _slugify(value: str) -> str:
    """Convert a string to a URL-friendly slug.

    Args:
        value: The string to slugify.

    Returns:
        Lowercase, hyphen-separated slug.
    """
    value = _SLUG_RE.sub("", value.lower())
    return _WHITESPACE_RE.sub("-", value).strip("-")


def _validate_mapping(mapping: object, required: set[str], label: str) -> None:
    """Validate that *mapping* is a dict containing all *required* keys.

    Raises:
        TypeError: If *mapping* is not a dict.
        ValueError: If *mapping* is missing required keys.
    """
    if not isinstance(mapping, dict):
        msg = f"{label} must be a mapping, got {type(mapping).__name__}"
        raise TypeError(msg)
    missing = required - mapping.keys()
    if missing:
        msg = f"{label} is missing required fields: {', '.join(sorted(missing))}"
        raise ValueError(msg)


def _validate_amounts(item: dict[str, Any], fields: tuple[str, ...], label: str) -> None:
    """Ensure money and count fields are non-negative integers.

    Prices are integer minor units; ``price_cents = 49.0`` is rejected.
    """
    for key in fields:
        if key not in item:
            continue
        value = item[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            msg = f"{label}.{key} must be a non-negative integer, got {value!r}"
            raise ValueError(msg)


def _validate_choice(item: dict[str, Any], key: str, choices: set[str], label: str) -> None:
    if key in item and item[key] not in choices:
        msg = f"{label}.{key} must be one of {', '.join(sorted(choices))}, got {item[key]!r}"
        raise ValueError(msg)


def _validate_tickets(offering: dict[str, Any], label: str) -> None:
    tickets = offering.get("tickets")
    if tickets is None:
        offering["tickets"] = []
        return
    if not isinstance(tickets, list):
        msg = f"{label}.tickets must be a list"
        raise ValueError(msg)
    if tickets and offering["kind"] != "event":
        msg = f"{label} is a {offering['kind']}; only events have tickets"
        raise ValueError(msg)

    seen: set[str] = set()
    for idx, ticket in enumerate(tickets):
        ticket_label = f"{label}.tickets[{idx}]"
        _validate_mapping(ticket, _REQUIRED_TICKET_FIELDS, ticket_label)
        _validate_amounts(ticket, _NON_NEGATIVE_TICKET_FIELDS, ticket_label)
        if "quantity_sold" in ticket:
            msg = f"{ticket_label}.quantity_sold is managed by the inventory ledger and cannot be configured"
            raise ValueError(msg)
        if ticket["name"] in seen:
            msg = f"{label} has duplicate ticket name: {ticket['name']}"
            raise ValueError(msg)
        seen.add(ticket["name"])


def load_catalog_config(path: str | Path) -> list[dict[str, Any]]:
    """Load and validate a catalog TOML configuration file.

    Args:
        path: Filesystem path to the TOML file.

    Returns:
        The list of offering mappings. Each has ``slug`` (generated from
        ``title`` when absent), ``kind`` (default ``"event"``) and a
        ``tickets`` list (empty for courses).

    Raises:
        FileNotFoundError: If *path* does not exist.
        TypeError: If an offering or ticket is not a table.
        ValueError: If required keys or fields are missing or invalid, or
            the file is not valid TOML.
    """
    path = Path(path)
    if not path.exists():
        msg = f"Catalog config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as fh:
        try:
            data: dict[str, Any] = tomllib.load(fh, parse_float=Decimal)
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid TOML in {path}: {exc}"
            raise ValueError(msg) from exc

    offerings = data.get("offerings")
    if not isinstance(offerings, list) or not offerings:
        msg = "Missing required [[offerings]] entries in config file"
        raise ValueError(msg)

    seen_slugs: set[str] = set()
    for idx, offering in enumerate(offerings):
        label = f"offerings[{idx}]"
        _validate_mapping(offering, _REQUIRED_OFFERING_FIELDS, label)
        offering.setdefault("kind", "event")
        _validate_choice(offering, "kind", _KINDS, label)
        _validate_choice(offering, "status", _STATUSES, label)
        _validate_amounts(offering, _NON_NEGATIVE_OFFERING_FIELDS, label)
        if "quantity_sold" in offering:
            msg = f"{label}.quantity_sold is managed by the inventory ledger and cannot be configured"
            raise ValueError(msg)

        if "slug" not in offering:
            offering["slug"] = _slugify(offering["title"])
        slug = offering["slug"]
        if not isinstance(slug, str) or not slug:
            msg = f"{label}.slug must be a non-empty string"
            raise ValueError(msg)
        if slug in seen_slugs:
            msg = f"offerings has duplicate slug: {slug}"
            raise ValueError(msg)
        seen_slugs.add(slug)

        _validate_tickets(offering, label)

    return offerings
