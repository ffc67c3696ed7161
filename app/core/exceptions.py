"""Error taxonomy for the delivery fulfillment subsystem.

ValidationError / NotFoundError are raised before any write and surface to
the caller. CollaboratorError is raised by side-effect collaborators and is
caught, logged and queued for retry by the orchestrator.
"""
from typing import Dict, Optional


class DeliveryError(Exception):
    """Base exception for delivery fulfillment errors."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DeliveryError):
    """Request is inconsistent with current stored state."""
    pass


class NotFoundError(DeliveryError):
    """An identifier does not resolve."""
    pass


class StateConflictError(ValidationError):
    """Requested transition is not allowed from the current state."""
    def __init__(self, message: str, current_status: Optional[str] = None, details: Optional[Dict] = None):
        details = dict(details or {})
        if current_status is not None:
            details["current_status"] = current_status
        self.current_status = current_status
        super().__init__(message, details)


class CarrierNotFound(ValidationError):
    """Carrier referenced while scheduling does not exist."""
    pass


class ProductNotInSale(ValidationError):
    """Requested product is not one of the sale's line items."""
    pass


class InvalidQuantity(ValidationError):
    """Quantity or reserved-unit selection is not acceptable."""
    pass


class InvalidAmount(ValidationError):
    """Monetary amount is not acceptable."""
    pass


class DeliveryNotFound(NotFoundError):
    pass


class SaleNotFound(NotFoundError):
    pass


class CollaboratorError(DeliveryError):
    """A post-transition bookkeeping step failed."""
    pass
