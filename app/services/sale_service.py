"""Sale store access: the fulfillment subsystem reads sales and writes their status."""
import logging
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SaleNotFound
from app.models.sale import Sale, SaleItem
from app.schemas.sale import SaleCreate


logger = logging.getLogger(__name__)


class SaleService:
    """Service for the sale records deliveries fulfill."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_sale(self, sale_id: uuid.UUID, for_update: bool = False) -> Optional[Sale]:
        """Get sale with line items."""
        stmt = (
            select(Sale)
            .options(selectinload(Sale.items))
            .where(Sale.id == sale_id)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Sale)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require_sale(self, sale_id: uuid.UUID, for_update: bool = False) -> Sale:
        sale = await self.get_sale(sale_id, for_update=for_update)
        if not sale:
            raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": str(sale_id)})
        return sale

    async def create_sale(self, data: SaleCreate, actor: Optional[str] = None) -> Sale:
        """Create a sale with its line items."""
        sale = Sale(
            sale_number=data.sale_number,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            customer_email=data.customer_email,
            status=data.status,
            created_by=actor,
            updated_by=actor,
        )
        total = Decimal("0")
        for position, item in enumerate(data.items, start=1):
            subtotal = item.unit_price * item.quantity
            total += subtotal
            sale.items.append(SaleItem(
                position=position,
                product_id=item.product_id,
                sku=item.sku,
                name=item.name,
                brand=item.brand,
                presentation=item.presentation,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=subtotal,
            ))
        sale.total_amount = total

        self.db.add(sale)
        await self.db.flush()
        return sale

    async def update_status(self, sale_id: uuid.UUID, status: str, actor: Optional[str] = None) -> Sale:
        """Set the sale's status and stamp the actor."""
        sale = await self.require_sale(sale_id)
        if sale.status != status:
            logger.info(f"[Sale {sale.sale_number}] Status {sale.status} -> {status}")
        sale.status = status
        sale.updated_by = actor
        await self.db.flush()
        return sale
