"""Sale fulfillment: derive a sale's delivery status from its deliveries."""
import logging
from decimal import Decimal
from typing import List, Optional
import uuid

from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.locks import sale_locks
from app.models.delivery import Delivery, DeliveryStatus, OPEN_STATUSES
from app.models.sale import Sale, SaleStatus
from app.schemas.sale import FulfillmentView, SaleDeliveryRow, SaleDeliverySummary
from app.services.sale_service import SaleService


logger = logging.getLogger(__name__)


def target_status(total_quantity: int, delivered_quantity: int, current: str) -> str:
    """
    DELIVERED once everything is delivered, IN_DELIVERY while partially
    delivered, otherwise the current status is kept.
    """
    if total_quantity <= 0:
        return current
    if delivered_quantity >= total_quantity:
        return SaleStatus.DELIVERED.value
    if delivered_quantity > 0:
        return SaleStatus.IN_DELIVERY.value
    return current


class SaleFulfillmentService:
    """Recomputes sale status from delivered quantities."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sales = SaleService(db)

    async def delivered_quantity(self, sale_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Delivery.item_count), 0)).where(
                Delivery.sale_id == sale_id,
                Delivery.status == DeliveryStatus.DELIVERED.value
            )
        )
        return int(result.scalar() or 0)

    async def reconcile(self, sale_id: uuid.UUID, actor: Optional[str] = None) -> FulfillmentView:
        """
        Recompute and, only if it differs, persist the sale status.

        Safe to re-run: a second call on an unchanged sale writes nothing.

        Raises:
            SaleNotFound: sale does not exist
        """
        await sale_locks.hold_for_transaction(self.db, sale_id)

        sale = await self.sales.require_sale(sale_id, for_update=True)
        total = sale.total_quantity
        delivered = await self.delivered_quantity(sale_id)

        previous = sale.status
        target = target_status(total, delivered, previous)
        changed = target != previous
        if changed:
            await self.sales.update_status(sale_id, target, actor)
            logger.info(f"[Sale {sale.sale_number}] Reconciled {delivered}/{total}: {previous} -> {target}")
        else:
            logger.debug(f"[Sale {sale.sale_number}] Reconciled {delivered}/{total}: no change")

        return FulfillmentView(
            sale_id=sale.id,
            sale_number=sale.sale_number,
            total_quantity=total,
            delivered_quantity=delivered,
            pending_quantity=max(total - delivered, 0),
            previous_status=previous,
            status=target,
            changed=changed,
        )

    async def delivery_summary(self, sale_id: uuid.UUID) -> SaleDeliverySummary:
        """Per-sale overview of every delivery scheduled against it."""
        sale = await self.sales.require_sale(sale_id)
        result = await self.db.execute(
            select(Delivery)
            .options(selectinload(Delivery.items))
            .where(Delivery.sale_id == sale_id)
            .order_by(Delivery.delivery_index)
        )
        deliveries: List[Delivery] = list(result.scalars().all())

        open_values = [s.value for s in OPEN_STATUSES]
        delivered = [d for d in deliveries if d.status == DeliveryStatus.DELIVERED.value]
        delivered_quantity = sum(d.item_count for d in delivered)
        total_quantity = sale.total_quantity

        return SaleDeliverySummary(
            sale_id=sale.id,
            sale_number=sale.sale_number,
            sale_status=sale.status,
            total_deliveries=len(deliveries),
            delivered_deliveries=len(delivered),
            pending_deliveries=sum(1 for d in deliveries if d.status in open_values),
            failed_deliveries=sum(1 for d in deliveries if d.status == DeliveryStatus.FAILED.value),
            total_quantity=total_quantity,
            delivered_quantity=delivered_quantity,
            total_distribution_cost=sum((d.carrier_cost or Decimal("0") for d in delivered), Decimal("0")),
            complete=total_quantity > 0 and delivered_quantity >= total_quantity,
            deliveries=[
                SaleDeliveryRow(
                    delivery_id=d.id,
                    code=d.code,
                    delivery_index=d.delivery_index,
                    status=d.status,
                    item_count=d.item_count,
                    carrier_name=d.carrier_name,
                    carrier_cost=d.carrier_cost,
                    scheduled_at=d.scheduled_at,
                    delivered_at=d.delivered_at,
                )
                for d in deliveries
            ],
        )
