"""
Bookkeeping steps that follow a delivery transition, and their retry outbox.

Every step is described by a JSON payload so it can run right after the
transition or be replayed later by the retry job from a bookkeeping_tasks
row. Steps load what they need from the database instead of trusting
in-memory objects, and the ones that create records skip work already done.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import utc_now
from app.core.exceptions import CollaboratorError, DeliveryError, DeliveryNotFound
from app.models.bookkeeping import BookkeepingStep, BookkeepingTask, BookkeepingTaskStatus
from app.models.carrier_ledger import LedgerEntryKind
from app.models.delivery import Delivery
from app.services.carrier_ledger_service import CarrierLedgerService
from app.services.carrier_service import CarrierService
from app.services.expense_service import ExpenseService
from app.services.inventory_unit_service import InventoryUnitService
from app.services.sale_fulfillment_service import SaleFulfillmentService


logger = logging.getLogger(__name__)


def _uuid(value) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


class BookkeepingService:
    """Runs bookkeeping steps and keeps the outbox of failed ones."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== STEP EXECUTION ====================

    async def execute(self, step: BookkeepingStep, payload: Dict[str, Any], actor: Optional[str] = None) -> Any:
        """Run one step. Collaborator exceptions propagate to the caller."""
        step = BookkeepingStep(step)
        handler = {
            BookkeepingStep.CONFIRM_UNITS: self._confirm_units,
            BookkeepingStep.RELEASE_UNITS: self._release_units,
            BookkeepingStep.DISTRIBUTION_EXPENSE: self._distribution_expense,
            BookkeepingStep.LEDGER_ENTRY: self._ledger_entry,
            BookkeepingStep.CARRIER_METRICS: self._carrier_metrics,
            BookkeepingStep.SALE_RECONCILE: self._sale_reconcile,
        }[step]
        try:
            return await handler(payload, actor)
        except DeliveryError:
            raise
        except Exception as e:
            raise CollaboratorError(f"{step.value} failed: {e}", {"step": step.value}) from e

    async def _load_delivery(self, delivery_id) -> Delivery:
        result = await self.db.execute(select(Delivery).where(Delivery.id == _uuid(delivery_id)))
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found")
        return delivery

    async def _confirm_units(self, payload: Dict[str, Any], actor: Optional[str]):
        result = await InventoryUnitService(self.db).confirm_sale(
            payload["unit_ids"],
            _uuid(payload["sale_id"]),
            payload["sale_number"],
            Decimal(payload["amount"]),
            actor,
        )
        code = payload.get("delivery_code")
        logger.info(f"[Delivery {code}] Units confirmed: {result.succeeded}/{result.total}")
        if result.failed:
            logger.warning(f"[Delivery {code}] Units not confirmed: {', '.join(result.failed_ids)}")
        return result

    async def _release_units(self, payload: Dict[str, Any], actor: Optional[str]):
        result = await InventoryUnitService(self.db).release(payload["unit_ids"], payload["reason"], actor)
        code = payload.get("delivery_code")
        logger.info(f"[Delivery {code}] Units released: {result.succeeded}/{result.total}")
        if result.failed:
            logger.warning(f"[Delivery {code}] Units not released: {', '.join(result.failed_ids)}")
        return result

    async def _distribution_expense(self, payload: Dict[str, Any], actor: Optional[str]):
        delivery = await self._load_delivery(payload["delivery_id"])
        if delivery.distribution_expense_id:
            logger.info(f"[Delivery {delivery.code}] Distribution expense already recorded, skipping")
            return delivery.distribution_expense_id

        expense_id = await ExpenseService(self.db).create_distribution_expense(
            delivery_id=delivery.id,
            delivery_code=delivery.code,
            sale_id=delivery.sale_id,
            sale_number=delivery.sale_number,
            carrier_id=delivery.carrier_id,
            carrier_name=delivery.carrier_name,
            cost=delivery.carrier_cost,
            district=delivery.district,
            actor=actor,
        )
        delivery.distribution_expense_id = expense_id
        await self.db.flush()
        return expense_id

    async def _ledger_entry(self, payload: Dict[str, Any], actor: Optional[str]):
        delivery = await self._load_delivery(payload["delivery_id"])
        ledger = CarrierLedgerService(self.db)
        kind = LedgerEntryKind(payload["kind"])

        if kind == LedgerEntryKind.SUCCESSFUL_DELIVERY:
            existing = await ledger.list_by_delivery(delivery.id)
            if any(entry.kind == kind.value for entry in existing):
                logger.info(f"[Delivery {delivery.code}] Ledger entry already recorded, skipping")
                return None
            amount = payload.get("amount_collected")
            return await ledger.record_successful_delivery(
                delivery,
                amount_collected=Decimal(amount) if amount else None,
                expense_id=delivery.distribution_expense_id,
                actor=actor,
            )
        return await ledger.record_failed_delivery(delivery, payload.get("reason") or "", actor)

    async def _carrier_metrics(self, payload: Dict[str, Any], actor: Optional[str]):
        return await CarrierService(self.db).record_delivery(
            _uuid(payload["carrier_id"]),
            success=payload["success"],
            duration_minutes=payload.get("duration_minutes") or 0,
            cost=Decimal(payload.get("cost") or "0"),
            district=payload.get("district"),
        )

    async def _sale_reconcile(self, payload: Dict[str, Any], actor: Optional[str]):
        return await SaleFulfillmentService(self.db).reconcile(_uuid(payload["sale_id"]), actor)

    # ==================== OUTBOX ====================

    async def run_step(
        self,
        delivery_id: uuid.UUID,
        delivery_code: str,
        step: BookkeepingStep,
        payload: Dict[str, Any],
        actor: Optional[str] = None
    ) -> Any:
        """
        Run a step inside its own savepoint.

        On failure the savepoint is rolled back, the error logged and a
        PENDING task written; the caller carries on with the next step.
        Returns the step's result, or None when it failed.
        """
        try:
            async with self.db.begin_nested():
                return await self.execute(step, payload, actor)
        except DeliveryError as e:
            logger.error(f"[Delivery {delivery_code}] Step {step.value} failed: {e}", exc_info=True)
            await self.enqueue(delivery_id, delivery_code, step, payload, actor, e)
            return None

    async def enqueue(
        self,
        delivery_id: uuid.UUID,
        delivery_code: str,
        step: BookkeepingStep,
        payload: Dict[str, Any],
        actor: Optional[str],
        error: Exception
    ) -> BookkeepingTask:
        task = BookkeepingTask(
            delivery_id=delivery_id,
            delivery_code=delivery_code,
            step=BookkeepingStep(step).value,
            payload=payload,
            status=BookkeepingTaskStatus.PENDING.value,
            attempts=1,
            last_error=str(error)[:2000],
            actor=actor,
        )
        self.db.add(task)
        await self.db.flush()
        return task

    async def list_for_delivery(self, delivery_id: uuid.UUID) -> List[BookkeepingTask]:
        result = await self.db.execute(
            select(BookkeepingTask)
            .where(BookkeepingTask.delivery_id == delivery_id)
            .order_by(BookkeepingTask.created_at)
        )
        return list(result.scalars().all())

    async def retry_pending(self, limit: int = 100) -> Dict[str, int]:
        """
        Replay PENDING tasks in creation order.

        Success marks the task DONE; failure bumps attempts and marks it
        ABANDONED once BOOKKEEPING_MAX_ATTEMPTS is reached.
        """
        result = await self.db.execute(
            select(BookkeepingTask)
            .where(BookkeepingTask.status == BookkeepingTaskStatus.PENDING.value)
            .order_by(BookkeepingTask.created_at)
            .limit(limit)
        )
        tasks = list(result.scalars().all())
        stats = {"retried": len(tasks), "done": 0, "failed": 0, "abandoned": 0}

        for task in tasks:
            try:
                async with self.db.begin_nested():
                    await self.execute(BookkeepingStep(task.step), task.payload, task.actor)
            except DeliveryError as e:
                task.attempts += 1
                task.last_error = str(e)[:2000]
                if task.attempts >= settings.BOOKKEEPING_MAX_ATTEMPTS:
                    task.status = BookkeepingTaskStatus.ABANDONED.value
                    stats["abandoned"] += 1
                    logger.error(
                        f"[Delivery {task.delivery_code}] Step {task.step} abandoned after "
                        f"{task.attempts} attempts: {e}"
                    )
                else:
                    stats["failed"] += 1
                    logger.warning(f"[Delivery {task.delivery_code}] Retry of {task.step} failed: {e}")
            else:
                task.status = BookkeepingTaskStatus.DONE.value
                task.completed_at = utc_now()
                stats["done"] += 1
                logger.info(f"[Delivery {task.delivery_code}] Step {task.step} replayed")
            await self.db.flush()

        return stats

