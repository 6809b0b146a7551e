"""ORM models for the produce kernel."""

from produce_kernel.models.catalog import MarketRate, Product, ProductUnit
from produce_kernel.models.credit_ledger import CreditEntryType, CreditLedgerEntry
from produce_kernel.models.customer import Customer, CustomerContractPrice
from produce_kernel.models.order import Order, OrderLine, PriceChange

__all__ = [
    "CreditEntryType",
    "CreditLedgerEntry",
    "Customer",
    "CustomerContractPrice",
    "MarketRate",
    "Order",
    "OrderLine",
    "PriceChange",
    "Product",
    "ProductUnit",
    "import_all_models",
]


def import_all_models() -> None:
    """Make sure every table is registered on Base.metadata.

    The sequence counter table lives beside SequenceService.
    """
    import produce_kernel.services.sequence_service  # noqa: F401
