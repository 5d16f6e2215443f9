"""Custom exceptions for the storefront core."""
from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    """Base exception for all business-rule violations.

    ``kind`` is the stable machine-readable name surfaced to clients,
    ``status_code`` the HTTP status the API layer answers with.
    """

    kind = "StorefrontError"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.kind, "message": self.message}


class InvalidInputError(StorefrontError):
    """Raised when a request field is malformed or out of range."""

    kind = "InvalidInput"
    status_code = 400


class NotFoundError(StorefrontError):
    """Raised when a cart, cart line, order or product does not exist."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        self.identifier = identifier
        msg = f"{resource} not found"
        if identifier is not None:
            msg = f"{resource} not found: {identifier}"
        super().__init__(msg)


class InvalidTransitionError(StorefrontError):
    """Raised when a state-machine move is not allowed from the current state."""

    kind = "InvalidTransition"
    status_code = 400

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Order cannot move from '{current}' to '{target}'")


class InvalidStatusError(StorefrontError):
    """Raised when a status value is outside its enumerated set."""

    kind = "InvalidStatus"
    status_code = 400

    def __init__(self, field: str, value: Any, allowed):
        self.field = field
        self.value = value
        self.allowed = list(allowed)
        super().__init__(
            f"Invalid {field} '{value}'. Allowed values: {', '.join(self.allowed)}"
        )


class EmptyCartError(StorefrontError):
    """Raised when checking out a missing or empty cart."""

    kind = "EmptyCart"
    status_code = 400

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class NoItemsError(StorefrontError):
    """Raised when an explicit order is placed without items."""

    kind = "NoItems"
    status_code = 400

    def __init__(self, message: str = "No items provided"):
        super().__init__(message)


class SKUExhaustedError(StorefrontError):
    """Raised when no free SKU was found within the retry bound."""

    kind = "SKUExhausted"
    status_code = 500

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique SKU after {attempts} attempts")


class ConflictError(StorefrontError):
    """Raised on a unique-constraint violation that could not be retried away."""

    kind = "Conflict"
    status_code = 409


class StockReservationError(StorefrontError):
    """Raised when one or more stock decrements of an order could not be applied.

    ``results`` holds the per-item outcomes so callers can see exactly
    which products were short.
    """

    kind = "StockReservationFailed"
    status_code = 409

    def __init__(self, results: List[Any], message: Optional[str] = None):
        self.results = results
        failed = [r for r in results if not r.ok]
        if message is None:
            message = f"Insufficient stock for {len(failed)} of {len(results)} item(s)"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["items"] = [r.to_dict() for r in self.results]
        return body
