"""
Command inputs for the order lifecycle.

Pure value objects.  The route layer builds them after authentication;
the kernel trusts ``Actor`` as given.

Price edits come in two explicit shapes instead of one code path with role
checks:

    CustomerPriceEdit   a customer editing their own order: may remove
                        lines and, on a contract account, add products
                        that already have a contract price.  Never sets
                        rates.
    StaffPriceEdit      staff: may change rates of non-contract lines,
                        remove lines and add any active product.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class Actor:
    """Who is issuing a command.

    ``customer_id`` is set only when the actor is a customer's own login;
    staff act for any customer.
    """

    actor_id: UUID
    name: str | None = None
    customer_id: UUID | None = None

    @property
    def is_customer(self) -> bool:
        return self.customer_id is not None


@dataclass(frozen=True)
class LineRequest:
    """One product on a new order.  ``rate`` is an optional staff override."""

    product_id: UUID
    quantity: Decimal
    rate: Decimal | None = None


@dataclass(frozen=True)
class LineEdit:
    """One product in a price edit.

    quantity None leaves it unchanged; 0 removes the line.  rate None
    leaves the rate unchanged.
    """

    product_id: UUID
    rate: Decimal | None = None
    quantity: Decimal | None = None


@dataclass(frozen=True)
class CustomerPriceEdit:
    actor: Actor
    reason: str | None = None
    expected_version: int | None = None


@dataclass(frozen=True)
class StaffPriceEdit:
    actor: Actor
    reason: str | None = None
    expected_version: int | None = None


PriceEditCommand = CustomerPriceEdit | StaffPriceEdit
