class WorkflowError(Exception):
    """Base class for errors raised by the order workflow services."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Validation

class InvalidInputError(WorkflowError):
    kind = "validation"
    status_code = 400


class EmptyCartError(InvalidInputError):
    def __init__(self, message: str = "Your cart is empty"):
        super().__init__(message)


# Authorization

class ForbiddenError(WorkflowError):
    kind = "forbidden"
    status_code = 403


# Lookup

class NotFoundError(WorkflowError):
    kind = "not_found"
    status_code = 404


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


# State conflicts

class ConflictError(WorkflowError):
    kind = "conflict"
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from '{current}' to '{target}'")


class NotPendingError(ConflictError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"This order can no longer be cancelled (status: {status})")


class AlreadyRequestedError(ConflictError):
    def __init__(self, refund_status: str):
        self.refund_status = refund_status
        super().__init__(f"A cancellation has already been requested for this order (refund status: {refund_status})")


class InvalidRefundStateError(ConflictError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move refund from '{current}' to '{target}'")


class ConcurrentUpdateError(ConflictError):
    pass


# Resources

class ResourceError(WorkflowError):
    kind = "resource"
    status_code = 422


class InvalidPromoError(ResourceError):
    pass


class InsufficientStockError(ResourceError):
    def __init__(self, product_name: str, available: int, required: int):
        self.product_name = product_name
        self.available = available
        self.required = required
        super().__init__(
            f"Not enough stock for '{product_name}'. Available: {available}, requested: {required}"
        )


class ProductUnavailableError(ResourceError):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"'{product_name}' is no longer available")


# Infrastructure

class PersistenceError(WorkflowError):
    kind = "persistence"
    status_code = 503
