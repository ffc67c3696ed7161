"""
Inventory unit gateway.

Only the two operations deliveries need: confirm reserved units as sold,
and release units back to available stock. Units are processed one by one;
a missing unit or a unit in the wrong state is counted as failed and
logged, never raised, so one bad unit does not block the rest.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_now
from app.models.inventory import InventoryUnit, InventoryUnitStatus


logger = logging.getLogger(__name__)


@dataclass
class UnitBatchResult:
    succeeded: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


# Only these states can be released back to stock
RELEASABLE_STATUSES = (InventoryUnitStatus.RESERVED.value, InventoryUnitStatus.AVAILABLE.value)


class InventoryUnitService:
    """Service for confirming and releasing individual inventory units."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_unit(self, unit_id: str) -> Optional[InventoryUnit]:
        try:
            key = uuid.UUID(str(unit_id))
        except ValueError:
            return None
        result = await self.db.execute(
            select(InventoryUnit).where(InventoryUnit.id == key).with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _append_movement(unit: InventoryUnit, movement_type: str, actor: Optional[str], notes: str) -> None:
        # Reassign so the JSON column is flagged dirty
        unit.movements = [
            *(unit.movements or []),
            {"type": movement_type, "at": utc_now().isoformat(), "by": actor, "notes": notes},
        ]

    async def confirm_sale(
        self,
        unit_ids: Sequence[str],
        sale_id: uuid.UUID,
        sale_number: str,
        amount: Decimal,
        actor: Optional[str] = None
    ) -> UnitBatchResult:
        """
        Mark reserved units as sold.

        The amount (delivery subtotal) is prorated evenly across the units
        and stored as each unit's sale price.
        """
        result = UnitBatchResult()
        if not unit_ids:
            return result

        unit_price = (Decimal(str(amount or 0)) / len(unit_ids)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        now = utc_now()

        for unit_id in unit_ids:
            unit = await self._get_unit(unit_id)
            if unit is None:
                logger.warning(f"Unit {unit_id} not found, cannot confirm sale {sale_number}")
                result.failed += 1
                result.failed_ids.append(str(unit_id))
                continue
            if unit.status != InventoryUnitStatus.RESERVED.value:
                logger.warning(f"Unit {unit_id} is {unit.status}, expected RESERVED for sale {sale_number}")
                result.failed += 1
                result.failed_ids.append(str(unit_id))
                continue

            unit.status = InventoryUnitStatus.SOLD.value
            unit.sale_id = sale_id
            unit.sale_number = sale_number
            unit.sold_at = now
            unit.sale_price = unit_price
            unit.updated_by = actor
            self._append_movement(unit, "SALE", actor, f"Sold in {sale_number}")
            result.succeeded += 1

        await self.db.flush()
        return result

    async def release(
        self,
        unit_ids: Sequence[str],
        reason: str,
        actor: Optional[str] = None
    ) -> UnitBatchResult:
        """Return units to AVAILABLE and clear their reservation."""
        result = UnitBatchResult()

        for unit_id in unit_ids:
            unit = await self._get_unit(unit_id)
            if unit is None:
                logger.warning(f"Unit {unit_id} not found, cannot release")
                result.failed += 1
                result.failed_ids.append(str(unit_id))
                continue
            if unit.status not in RELEASABLE_STATUSES:
                logger.warning(f"Unit {unit_id} is {unit.status}, cannot release")
                result.failed += 1
                result.failed_ids.append(str(unit_id))
                continue

            unit.status = InventoryUnitStatus.AVAILABLE.value
            unit.reserved_for_sale_id = None
            unit.reserved_at = None
            unit.updated_by = actor
            self._append_movement(unit, "RELEASE", actor, reason)
            result.succeeded += 1

        await self.db.flush()
        return result
