"""Expense recorder: one distribution expense (GD) per completed delivery."""
import logging
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import business_now
from app.models.expense import Expense, ExpenseCategory, ExpenseStatus
from app.services.code_sequence_service import CodeSequenceService


logger = logging.getLogger(__name__)


class ExpenseService:
    """Service for recording expenses."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_expense(self, expense_id: uuid.UUID) -> Optional[Expense]:
        result = await self.db.execute(select(Expense).where(Expense.id == expense_id))
        return result.scalar_one_or_none()

    async def create_distribution_expense(
        self,
        delivery_id: uuid.UUID,
        delivery_code: str,
        sale_id: uuid.UUID,
        sale_number: str,
        carrier_id: uuid.UUID,
        carrier_name: str,
        cost: Decimal,
        district: Optional[str] = None,
        actor: Optional[str] = None
    ) -> uuid.UUID:
        """
        Record the carrier cost of a delivery as a pending GD expense.

        Written even when cost is zero so every completed delivery leaves an
        audit trail. Returns the expense id.
        """
        number = await CodeSequenceService(self.db).next_code(settings.EXPENSE_CODE_PREFIX)
        now = business_now()

        description = f"Delivery {delivery_code} - {carrier_name}"
        if district:
            description += f" ({district})"

        expense = Expense(
            expense_number=number,
            expense_type="DELIVERY",
            category=ExpenseCategory.DISTRIBUTION.value,
            description=description,
            amount=Decimal(str(cost or 0)),
            status=ExpenseStatus.PENDING.value,
            provider=carrier_name,
            month=now.month,
            year=now.year,
            delivery_id=delivery_id,
            delivery_code=delivery_code,
            sale_id=sale_id,
            sale_number=sale_number,
            carrier_id=carrier_id,
            carrier_name=carrier_name,
            district=district,
            created_by=actor,
        )
        self.db.add(expense)
        await self.db.flush()

        logger.info(f"[Delivery {delivery_code}] Distribution expense {number} recorded: {expense.amount}")
        return expense.id
