"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(30) - NOT native database ENUM
• SQLAlchemy: String(30) with Mapped[str]
• Pydantic: Python Enum for API validation
• API Response: Use string directly (NO .value needed)
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: DeliveryStatus.SCHEDULED → "SCHEDULED" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly
    Example: VARCHAR "SCHEDULED" → "SCHEDULED" (no conversion needed)

USAGE PATTERNS:
━━━━━━━━━━━━━━━
1. In SQLAlchemy Models:
   status: Mapped[str] = mapped_column(String(30), default="SCHEDULED")

2. In Pydantic Schemas (with case normalization):
   @field_validator("failure_reason", mode="before")
   @classmethod
   def normalize_reason(cls, v):
       return normalize_to_uppercase(v, VALID_FAILURE_REASONS)

3. In services (reading from DB):
   if status_in(delivery.status, DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED): ...
"""

from enum import Enum
from typing import Any, Optional, Set


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(DeliveryStatus.SCHEDULED)  # Pydantic input
        'SCHEDULED'
        >>> get_enum_value("SCHEDULED")  # Database value
        'SCHEDULED'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


# =============================================================================
# COMPARISON HELPERS
# =============================================================================

def is_status(db_value: Optional[str], enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return db_value == enum_value.value


def status_in(db_value: Optional[str], *enum_values: Enum) -> bool:
    """
    Check if database value matches any of the given enums.

    Examples:
        >>> status_in(delivery.status, DeliveryStatus.SCHEDULED, DeliveryStatus.EN_ROUTE)
        True
    """
    if db_value is None:
        return False
    return db_value in [e.value for e in enum_values]


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Returns the original value otherwise so Pydantic raises the
    validation error itself.
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.upper()
        if upper_v in valid_values:
            return upper_v
    return value


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_DELIVERY_STATUSES = {
    "SCHEDULED", "EN_ROUTE", "DELIVERED", "FAILED", "RESCHEDULED", "CANCELLED"
}

VALID_FAILURE_REASONS = {
    "NOT_FOUND", "ABSENT", "REFUSED", "DAMAGED_PRODUCT", "PAYMENT_REJECTED", "OTHER"
}

VALID_PAYMENT_METHODS = {
    "CASH", "TRANSFER", "YAPE", "PLIN", "CARD", "MERCADO_PAGO", "PAYPAL", "ZELLE", "OTHER"
}

VALID_CARRIER_TYPES = {"INTERNAL", "EXTERNAL"}

VALID_EXTERNAL_COURIERS = {"OLVA", "MERCADO_ENVIOS", "URBANO", "SHALOM", "OTHER"}
