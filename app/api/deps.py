from typing import Annotated, Optional
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DeliveryError, NotFoundError, StateConflictError
from app.database import get_db


logger = logging.getLogger(__name__)


async def get_actor(
    x_actor_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Dependency to get the acting user's identifier for audit stamping.

    Authentication happens upstream; this service only records who acted,
    taken from the X-Actor-Id header.
    """
    if not x_actor_id or not x_actor_id.strip():
        logger.warning("Mutating request without X-Actor-Id header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-Id header is required"
        )
    return x_actor_id.strip()


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Actor = Annotated[str, Depends(get_actor)]


def http_error(exc: DeliveryError) -> HTTPException:
    """Map the service error taxonomy onto HTTP status codes."""
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, StateConflictError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(
        status_code=status_code,
        detail={"message": exc.message, "type": type(exc).__name__, **exc.details}
    )
