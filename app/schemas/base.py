"""
Base Schema Classes for Pydantic Models

This module provides base classes that handle common patterns like UUID serialization,
ensuring consistency across all response schemas.

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Features:
    - Automatically handles UUID → string serialization in JSON
    - Enables from_attributes for ORM compatibility
    - Money (Decimal) rendered as float for the dashboard

    Usage:
        class CarrierResponse(BaseResponseSchema):
            id: UUID
            name: str
            fixed_cost: Optional[Decimal] = None
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            Decimal: float,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Enum fields are stored as their plain string values, matching the
    VARCHAR status columns.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
        use_enum_values=True,
    )


# Type aliases for common UUID patterns
OptionalUUID = Optional[UUID]
