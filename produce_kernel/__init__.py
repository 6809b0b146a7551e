"""
Produce Kernel - order lifecycle and credit-consistency engine.

Wholesale produce ordering core with:
- Per-customer price resolution (market, markup, contract)
- Atomic sequential order numbers
- Idempotent order creation
- Compare-and-swap order status transitions
- A customer credit balance backed by an append-only ledger
"""

__version__ = "0.1.0"
