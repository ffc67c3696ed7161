"""Carrier directory and per-carrier delivery metrics."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
import uuid

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_now
from app.core.exceptions import CarrierNotFound
from app.core.locks import carrier_locks
from app.models.carrier import Carrier, CarrierType
from app.schemas.carrier import CarrierCreate
from app.services.code_sequence_service import CodeSequenceService


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class CarrierService:
    """Service for carrier management and delivery metrics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== CARRIER DIRECTORY ====================

    async def get_carrier(self, carrier_id: uuid.UUID) -> Optional[Carrier]:
        """Get carrier by ID."""
        result = await self.db.execute(select(Carrier).where(Carrier.id == carrier_id))
        return result.scalar_one_or_none()

    async def get_carrier_for_update(self, carrier_id: uuid.UUID) -> Carrier:
        """Get carrier by ID with a row lock. Raises CarrierNotFound."""
        result = await self.db.execute(
            select(Carrier).where(Carrier.id == carrier_id).with_for_update()
        )
        carrier = result.scalar_one_or_none()
        if not carrier:
            raise CarrierNotFound(f"Carrier {carrier_id} not found", {"carrier_id": str(carrier_id)})
        return carrier

    async def get_carriers(
        self,
        carrier_type: Optional[CarrierType] = None,
        is_active: Optional[bool] = True,
        skip: int = 0,
        limit: int = 20
    ) -> Tuple[List[Carrier], int]:
        """Get paginated carriers with filters."""
        stmt = select(Carrier).order_by(Carrier.name)

        filters = []
        if is_active is not None:
            filters.append(Carrier.is_active == is_active)
        if carrier_type:
            filters.append(Carrier.carrier_type == carrier_type.value)

        if filters:
            stmt = stmt.where(and_(*filters))

        # Count
        count_stmt = select(func.count(Carrier.id))
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        # Paginate
        stmt = stmt.offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        items = list(result.scalars().all())

        return items, total

    async def create_carrier(self, data: CarrierCreate) -> Carrier:
        """Create new carrier with the next TR-NNN code."""
        code = await CodeSequenceService(self.db).next_code("TR")

        carrier = Carrier(code=code, **data.model_dump())
        self.db.add(carrier)
        await self.db.flush()

        logger.info(f"Carrier {code} created: {carrier.name}")
        return carrier

    # ==================== METRICS ====================

    async def record_delivery(
        self,
        carrier_id: uuid.UUID,
        success: bool,
        duration_minutes: int,
        cost: Decimal,
        district: Optional[str] = None
    ) -> Carrier:
        """
        Fold one delivery outcome into the carrier's metrics.

        Average time is taken over timed_deliveries, the successful
        deliveries with a known duration; served districts is a set kept in
        first-seen order.
        """
        await carrier_locks.hold_for_transaction(self.db, carrier_id)
        carrier = await self.get_carrier_for_update(carrier_id)
        cost = Decimal(str(cost or 0))

        carrier.total_deliveries += 1
        if success:
            carrier.successful_deliveries += 1
        else:
            carrier.failed_deliveries += 1

        carrier.success_rate = round(
            carrier.successful_deliveries / carrier.total_deliveries * 100, 2
        )

        if success and duration_minutes > 0:
            previous = carrier.timed_deliveries or 0
            carrier.timed_deliveries = previous + 1
            carrier.average_delivery_minutes = round(
                (carrier.average_delivery_minutes * previous + duration_minutes) / carrier.timed_deliveries,
                2
            )

        carrier.total_cost = (carrier.total_cost or Decimal("0")) + cost
        carrier.average_cost = (carrier.total_cost / carrier.total_deliveries).quantize(CENT, rounding=ROUND_HALF_UP)

        if district and district not in (carrier.served_districts or []):
            # Reassign so the JSON column is flagged dirty
            carrier.served_districts = [*(carrier.served_districts or []), district]

        carrier.last_delivery_at = utc_now()
        await self.db.flush()

        logger.info(
            f"[Carrier {carrier.code}] Metrics updated: success={success}, "
            f"total={carrier.total_deliveries}, rate={carrier.success_rate}%"
        )
        return carrier
