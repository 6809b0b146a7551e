"""
Typed Exception Hierarchy for the Produce Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The route layer must turn every kernel failure into a precise response
without parsing message strings.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (order_id, product_id, ...)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProduceKernelError (base)
    |
    +-- NotFoundError
    |   +-- CustomerNotFoundError
    |   +-- ProductNotFoundError
    |   +-- OrderNotFoundError
    |
    +-- InvalidInputError
    |   +-- EmptyOrderError
    |   +-- DuplicateLineError
    |   +-- InvalidQuantityError
    |   +-- InvalidRateError
    |   +-- InvalidPaymentError
    |   +-- QuantityChangeNotAllowedError
    |   +-- InactiveCustomerError
    |   +-- InactiveProductError
    |   +-- InvalidStatusTransitionError
    |   +-- OrderCancelledError
    |   +-- OrderNotDeliveredError
    |
    +-- ForbiddenError
    |   +-- OrderReconciledError
    |   +-- ContractPriceLockedError
    |   +-- ContractProductNotAllowedError
    |   +-- CustomerMismatchError
    |   +-- LineAdditionNotAllowedError
    |   +-- RateChangeNotAllowedError
    |
    +-- ConflictError
    |   +-- OrderStatusConflictError
    |   +-- OptimisticLockError
    |   +-- DuplicateIdempotencyKeyError
    |   +-- OrderAlreadyCancelledError
    |
    +-- StorageUnavailableError

===============================================================================
HANDLING PATTERNS
===============================================================================

NotFoundError, InvalidInputError and ForbiddenError are deterministic
business-rule outcomes: report them, do not retry the same request.

ConflictError is retryable: re-fetch current state, let the user decide,
re-issue.  The kernel never retries a conflict on its own with stale data.

StorageUnavailableError aborts the whole operation.  Nothing has been
committed; the caller reports a generic failure.

    try:
        manager.cancel(order_id, actor)
    except OrderStatusConflictError as e:
        return conflict(e.code, expected=e.expected_status)
    except OrderAlreadyCancelledError:
        return conflict("already cancelled")
"""


class ProduceKernelError(Exception):
    """
    Base exception for all produce kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "PRODUCE_KERNEL_ERROR"


# Not found


class NotFoundError(ProduceKernelError):
    """Base exception for missing customers, products and orders."""

    code: str = "NOT_FOUND"


class CustomerNotFoundError(NotFoundError):
    """Customer with given ID was not found."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class ProductNotFoundError(NotFoundError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class OrderNotFoundError(NotFoundError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


# Invalid input


class InvalidInputError(ProduceKernelError):
    """Base exception for requests that can never succeed as submitted."""

    code: str = "INVALID_INPUT"


class EmptyOrderError(InvalidInputError):
    """An order must have at least one line."""

    code: str = "EMPTY_ORDER"

    def __init__(self, reason: str = "At least one product is required"):
        self.reason = reason
        super().__init__(reason)


class DuplicateLineError(InvalidInputError):
    """The same product appears more than once in a request."""

    code: str = "DUPLICATE_LINE"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} appears more than once")


class InvalidQuantityError(InvalidInputError):
    """Quantity outside (0, upper bound] or not whole for piece goods."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, product_id: str, quantity: str, reason: str):
        self.product_id = product_id
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity} for product {product_id}: {reason}")


class InvalidRateError(InvalidInputError):
    """Requested rate is negative or not a number."""

    code: str = "INVALID_RATE"

    def __init__(self, product_id: str, rate: str):
        self.product_id = product_id
        self.rate = rate
        super().__init__(f"Invalid rate {rate} for product {product_id}")


class InvalidPaymentError(InvalidInputError):
    """Paid amount outside [0, total_amount]."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, order_id: str, paid_amount: str, total_amount: str):
        self.order_id = order_id
        self.paid_amount = paid_amount
        self.total_amount = total_amount
        super().__init__(
            f"Paid amount {paid_amount} must be between 0 and order total "
            f"{total_amount} (order {order_id})"
        )


class QuantityChangeNotAllowedError(InvalidInputError):
    """Quantity of an existing line cannot change on the price-update path."""

    code: str = "QUANTITY_CHANGE_NOT_ALLOWED"

    def __init__(self, order_id: str, product_id: str, old_quantity: str, new_quantity: str):
        self.order_id = order_id
        self.product_id = product_id
        self.old_quantity = old_quantity
        self.new_quantity = new_quantity
        super().__init__(
            f"Quantity of product {product_id} on order {order_id} cannot change "
            f"from {old_quantity} to {new_quantity} when editing prices"
        )


class InactiveCustomerError(InvalidInputError):
    """Orders cannot be created for an inactive customer."""

    code: str = "CUSTOMER_INACTIVE"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Cannot create order for inactive customer {customer_id}")


class InactiveProductError(InvalidInputError):
    """Product is no longer available."""

    code: str = "PRODUCT_INACTIVE"

    def __init__(self, product_id: str, product_name: str):
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f'Product "{product_name}" is no longer available')


class InvalidStatusTransitionError(InvalidInputError):
    """Requested status is not reachable from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_id} cannot move from {from_status} to {to_status}"
        )


class OrderCancelledError(InvalidInputError):
    """Cancelled orders accept no further financial changes."""

    code: str = "ORDER_CANCELLED"

    def __init__(self, order_id: str, operation: str):
        self.order_id = order_id
        self.operation = operation
        super().__init__(f"Order {order_id} is cancelled; {operation} is not allowed")


class OrderNotDeliveredError(InvalidInputError):
    """Only delivered orders can be reconciled."""

    code: str = "ORDER_NOT_DELIVERED"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}; only delivered orders can be reconciled")


# Forbidden


class ForbiddenError(ProduceKernelError):
    """Base exception for edits that the business rules prohibit."""

    code: str = "FORBIDDEN"


class OrderReconciledError(ForbiddenError):
    """Reconciled orders are permanently locked against financial edits."""

    code: str = "ORDER_RECONCILED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is reconciled and can no longer be edited")


class ContractPriceLockedError(ForbiddenError):
    """Contract-priced lines cannot have their rate changed."""

    code: str = "CONTRACT_PRICE_LOCKED"

    def __init__(self, order_id: str, product_id: str):
        self.order_id = order_id
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} on order {order_id} has a locked contract price"
        )


class ContractProductNotAllowedError(ForbiddenError):
    """Contract customer requested products without a contract price."""

    code: str = "CONTRACT_PRODUCT_NOT_ALLOWED"

    def __init__(self, customer_id: str, product_ids: list[str]):
        self.customer_id = customer_id
        self.product_ids = product_ids
        super().__init__(
            "Some products are not available for your account. "
            "Please contact us for pricing."
        )


class CustomerMismatchError(ForbiddenError):
    """A customer tried to act on another customer's account."""

    code: str = "CUSTOMER_MISMATCH"

    def __init__(self, acting_customer_id: str, target_customer_id: str):
        self.acting_customer_id = acting_customer_id
        self.target_customer_id = target_customer_id
        super().__init__("You can only manage orders for your own account")


class LineAdditionNotAllowedError(ForbiddenError):
    """Only staff may add products to an existing order."""

    code: str = "LINE_ADDITION_NOT_ALLOWED"

    def __init__(self, order_id: str, product_id: str):
        self.order_id = order_id
        self.product_id = product_id
        super().__init__(f"Product {product_id} cannot be added to order {order_id}")


class RateChangeNotAllowedError(ForbiddenError):
    """Customers may not set their own rates; only staff can."""

    code: str = "RATE_CHANGE_NOT_ALLOWED"

    def __init__(self, order_id: str, product_id: str):
        self.order_id = order_id
        self.product_id = product_id
        super().__init__(
            f"Rate for product {product_id} on order {order_id} can only be changed by staff"
        )


# Conflicts


class ConflictError(ProduceKernelError):
    """Base exception for concurrent-modification outcomes. Retryable."""

    code: str = "CONFLICT"


class OrderStatusConflictError(ConflictError):
    """Compare-and-swap on order status failed."""

    code: str = "ORDER_STATUS_CONFLICT"

    def __init__(self, order_id: str, expected_status: str, requested_status: str):
        self.order_id = order_id
        self.expected_status = expected_status
        self.requested_status = requested_status
        super().__init__(
            f"Order {order_id} is no longer {expected_status}; "
            "refresh and retry"
        )


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class DuplicateIdempotencyKeyError(ConflictError):
    """Insert lost the race on an idempotency key and no winner was found."""

    code: str = "DUPLICATE_IDEMPOTENCY_KEY"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Idempotency key already used: {idempotency_key}")


class OrderAlreadyCancelledError(ConflictError):
    """Cancellation is applied at most once per order."""

    code: str = "ORDER_ALREADY_CANCELLED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is already cancelled")


# Infrastructure


class StorageUnavailableError(ProduceKernelError):
    """A storage call failed; the whole operation was aborted."""

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage unavailable during {operation}: {reason}")
