# Overview: In-memory carts validated against the latest observed stock.

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import MedicineSnapshot
from ..money import cents_to_decimal, format_cents
from ..validation import coerce_int
from .feed_service import LiveFeed, Snapshot

"""
Cart rules (authoritative)

- A cart belongs to one actor/session and is never persisted.
- Every mutation re-checks against the LATEST observed stock, not the stock
  seen when the line was first added. Another cashier's sale may have shrunk
  it in the meantime.
- A rejected mutation leaves the cart exactly as it was.
- These checks are advisory; the sale committer re-validates at commit time.
"""


class StockLookup(Protocol):
    def get(self, medicine_id: int) -> MedicineSnapshot | None: ...


class LedgerLookup:
    """Reads the stock ledger directly on every lookup (needs an app context)."""

    def get(self, medicine_id: int) -> MedicineSnapshot | None:
        from .stock_service import find_medicine
        return find_medicine(medicine_id)


class LiveStockView:
    """
    Lookup backed by the medicine live feed: keeps the latest pushed snapshot
    and ignores snapshots older than the one it already holds.

    Meant for long-lived in-process consumers such as a cashier desk running
    next to the app, which pass it to CartRegistry.open(). Carts opened over
    HTTP use LedgerLookup, since a request-scoped view would reload the whole
    ledger on every call.
    """

    def __init__(self, feed: LiveFeed):
        self._feed = feed
        self._lock = threading.Lock()
        self._by_id: dict[int, MedicineSnapshot] = {}
        self.version = 0
        self._subscription = feed.subscribe(self._on_snapshot)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            if snapshot.version <= self.version:
                return
            self._by_id = {m.id: m for m in snapshot.items}
            self.version = snapshot.version

    def get(self, medicine_id: int) -> MedicineSnapshot | None:
        with self._lock:
            return self._by_id.get(medicine_id)

    def close(self) -> None:
        self._subscription.unsubscribe()

    def __enter__(self) -> "LiveStockView":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass(frozen=True)
class CartLine:
    medicine_id: int
    quantity: int
    # Name and price as observed at the line's last successful validation
    name: str
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "medicine_id": self.medicine_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": format_cents(self.unit_price_cents),
            "line_total": format_cents(self.line_total_cents),
        }


class Cart:
    def __init__(self, lookup: StockLookup, owner_id: str | None = None):
        self._lookup = lookup
        self.owner_id = owner_id
        self._lines: dict[int, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, medicine_id) -> bool:
        return medicine_id in self._lines

    def is_empty(self) -> bool:
        return not self._lines

    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    def get_line(self, medicine_id: int) -> CartLine | None:
        return self._lines.get(medicine_id)

    def _observe(self, medicine_id: int) -> MedicineSnapshot:
        medicine = self._lookup.get(medicine_id)
        if medicine is None:
            raise NotFoundError("Medicine", medicine_id)
        return medicine

    def _check(self, medicine: MedicineSnapshot, quantity: int) -> CartLine:
        if quantity > medicine.quantity:
            raise InsufficientStockError(
                medicine_id=medicine.id,
                requested=quantity,
                available=medicine.quantity,
                name=medicine.name,
            )
        return CartLine(
            medicine_id=medicine.id,
            quantity=quantity,
            name=medicine.name,
            unit_price_cents=medicine.price_cents,
        )

    def add_line(self, medicine_id: int) -> CartLine:
        """Add one unit: new line at 1, or increment an existing line."""
        medicine = self._observe(medicine_id)
        existing = self._lines.get(medicine_id)
        quantity = existing.quantity + 1 if existing else 1
        line = self._check(medicine, quantity)
        self._lines[medicine_id] = line
        return line

    def set_line_quantity(self, medicine_id: int, quantity) -> CartLine | None:
        """Replace a line's quantity; zero or less removes the line."""
        quantity = coerce_int(quantity, "quantity")
        if quantity <= 0:
            self.remove_line(medicine_id)
            return None
        medicine = self._observe(medicine_id)
        line = self._check(medicine, quantity)
        self._lines[medicine_id] = line
        return line

    def remove_line(self, medicine_id: int) -> None:
        self._lines.pop(medicine_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self._lines.values())

    def total(self) -> Decimal:
        return cents_to_decimal(self.total_cents())

    def total_quantity(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def to_dict(self) -> dict:
        return {
            "owner_id": self.owner_id,
            "lines": [line.to_dict() for line in self._lines.values()],
            "total": format_cents(self.total_cents()),
            "total_quantity": self.total_quantity(),
        }


class CartRegistry:
    """
    Holds the open carts of HTTP sessions, keyed by an unguessable token.

    Carts are only kept in process memory; a restart ends every session.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._carts: dict[str, Cart] = {}

    def open(self, owner_id: str, lookup: StockLookup | None = None) -> tuple[str, Cart]:
        """Open a cart for owner_id. Lookup defaults to a point read of the ledger."""
        if not owner_id:
            raise ValidationError("owner_id is required")
        cart = Cart(lookup or LedgerLookup(), owner_id=owner_id)
        token = secrets.token_urlsafe(16)
        with self._lock:
            self._carts[token] = cart
        return token, cart

    def get(self, token: str, owner_id: str) -> Cart:
        with self._lock:
            cart = self._carts.get(token)
        # Another actor's cart is reported as missing
        if cart is None or cart.owner_id != owner_id:
            raise NotFoundError("Cart", token)
        return cart

    def discard(self, token: str) -> None:
        with self._lock:
            self._carts.pop(token, None)

    def discard_owner(self, owner_id: str) -> int:
        """End every cart owned by the actor (session end)."""
        with self._lock:
            tokens = [t for t, cart in self._carts.items() if cart.owner_id == owner_id]
            for token in tokens:
                del self._carts[token]
        return len(tokens)

    def __len__(self) -> int:
        with self._lock:
            return len(self._carts)


def get_cart_registry() -> CartRegistry:
    return current_app.extensions["cart_registry"]
