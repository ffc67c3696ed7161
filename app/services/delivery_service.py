"""
Delivery lifecycle service.

STATE MACHINE:
━━━━━━━━━━━━━━
    (none)       ── schedule ─────────────────────────▶ SCHEDULED
    SCHEDULED    ── mark_en_route ────────────────────▶ EN_ROUTE
    SCHEDULED │ EN_ROUTE │ RESCHEDULED
                 ── record_outcome(success) ──────────▶ DELIVERED
                 ── record_outcome(fail) ─────────────▶ FAILED
                 ── record_outcome(fail, reschedule) ─▶ RESCHEDULED
                 ── cancel ───────────────────────────▶ CANCELLED

DELIVERED, FAILED and CANCELLED are terminal.

BOOKKEEPING:
━━━━━━━━━━━━
The delivery's own state write is committed first and is never reversed.
The side effects that follow (units, expense, ledger, metrics, sale status)
each run in their own savepoint; a failed step is logged and written to the
bookkeeping outbox for the retry job, and the next step still runs.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy import select, func, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import business_now, day_bounds, ensure_utc, minutes_between, utc_now
from app.core.enum_utils import get_enum_value, is_status, status_in
from app.core.exceptions import (
    CarrierNotFound,
    DeliveryNotFound,
    InvalidQuantity,
    ProductNotInSale,
    StateConflictError,
    ValidationError,
)
from app.core.locks import delivery_locks, sale_locks
from app.models.bookkeeping import BookkeepingStep
from app.models.carrier_ledger import LedgerEntryKind
from app.models.delivery import (
    Delivery,
    DeliveryItem,
    DeliveryStatus,
    FailureReason,
    OPEN_STATUSES,
)
from app.models.sale import SaleStatus
from app.schemas.delivery import (
    CarrierStats,
    DeliveryCreate,
    DeliveryDocumentKind,
    DeliveryOutcome,
    DeliverySearch,
    DeliveryStats,
    DistrictStats,
)
from app.services.bookkeeping_service import BookkeepingService
from app.services.carrier_service import CarrierService
from app.services.code_sequence_service import CodeSequenceService
from app.services.sale_service import SaleService


logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Sibling deliveries in these states no longer hold their units
INACTIVE_STATUSES = (DeliveryStatus.FAILED.value, DeliveryStatus.CANCELLED.value)

# Stats bucket for deliveries scheduled without a district
NO_DISTRICT = "Unassigned"


class DeliveryService:
    """Drives deliveries through their lifecycle and the bookkeeping around it."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sales = SaleService(db)
        self.carriers = CarrierService(db)
        self.sequences = CodeSequenceService(db)
        self.bookkeeping = BookkeepingService(db)

    # ==================== QUERIES ====================

    def _base_query(self):
        return select(Delivery).options(selectinload(Delivery.items))

    async def get_delivery(self, delivery_id: uuid.UUID) -> Optional[Delivery]:
        """Get delivery with line items."""
        result = await self.db.execute(
            self._base_query()
            .where(Delivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def require_delivery(self, delivery_id: uuid.UUID) -> Delivery:
        delivery = await self.get_delivery(delivery_id)
        if not delivery:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found", {"delivery_id": str(delivery_id)})
        return delivery

    async def get_by_code(self, code: str) -> Optional[Delivery]:
        result = await self.db.execute(self._base_query().where(Delivery.code == code))
        return result.scalar_one_or_none()

    async def list_by_sale(self, sale_id: uuid.UUID) -> List[Delivery]:
        """Deliveries of a sale in delivery_index order."""
        result = await self.db.execute(
            self._base_query()
            .where(Delivery.sale_id == sale_id)
            .order_by(Delivery.delivery_index)
        )
        return list(result.scalars().all())

    async def list_by_carrier(self, carrier_id: uuid.UUID, limit: int = 50) -> List[Delivery]:
        """Most recently scheduled first."""
        result = await self.db.execute(
            self._base_query()
            .where(Delivery.carrier_id == carrier_id)
            .order_by(Delivery.scheduled_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_pending(self) -> List[Delivery]:
        """Open deliveries, earliest scheduled first."""
        result = await self.db.execute(
            self._base_query()
            .where(Delivery.status.in_([s.value for s in OPEN_STATUSES]))
            .order_by(Delivery.scheduled_at)
        )
        return list(result.scalars().all())

    async def list_for_day(self, day: date) -> List[Delivery]:
        """Deliveries scheduled on a calendar day (business timezone)."""
        start, end = day_bounds(day)
        result = await self.db.execute(
            self._base_query()
            .where(Delivery.scheduled_at >= start, Delivery.scheduled_at < end)
            .order_by(Delivery.scheduled_at)
        )
        return list(result.scalars().all())

    async def search(self, filters: DeliverySearch) -> Tuple[List[Delivery], int]:
        """Filtered, paginated search. Newest scheduled first."""
        conditions = []
        if filters.status:
            conditions.append(Delivery.status == get_enum_value(filters.status))
        if filters.carrier_id:
            conditions.append(Delivery.carrier_id == filters.carrier_id)
        if filters.sale_id:
            conditions.append(Delivery.sale_id == filters.sale_id)
        if filters.date_from:
            conditions.append(Delivery.scheduled_at >= ensure_utc(filters.date_from))
        if filters.date_to:
            conditions.append(Delivery.scheduled_at <= ensure_utc(filters.date_to))
        if filters.district:
            conditions.append(Delivery.district.ilike(f"%{filters.district}%"))
        if filters.collection_pending is not None:
            conditions.append(Delivery.collection_pending == filters.collection_pending)

        stmt = self._base_query().order_by(Delivery.scheduled_at.desc())
        count_stmt = select(func.count(Delivery.id))
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        result = await self.db.execute(stmt.offset(filters.skip).limit(filters.limit))
        return list(result.scalars().all()), total

    async def preview_next_code(self) -> str:
        return await self.sequences.preview_next_code(
            settings.DELIVERY_CODE_PREFIX, str(business_now().year)
        )

    async def list_bookkeeping(self, delivery_id: uuid.UUID):
        await self.require_delivery(delivery_id)
        return await self.bookkeeping.list_for_delivery(delivery_id)

    # ==================== SCHEDULE ====================

    async def schedule(self, data: DeliveryCreate, actor: Optional[str] = None) -> Delivery:
        """
        Create a SCHEDULED delivery for part or all of a sale.

        Raises:
            SaleNotFound: sale does not exist
            CarrierNotFound: carrier does not exist
            ProductNotInSale: a selected product is not a line of the sale
            InvalidQuantity: bad quantity or reserved-unit selection
        """
        sale = await self.sales.require_sale(data.sale_id)
        carrier = await self.carriers.get_carrier(data.carrier_id)
        if not carrier:
            raise CarrierNotFound(f"Carrier {data.carrier_id} not found", {"carrier_id": str(data.carrier_id)})

        await sale_locks.hold_for_transaction(self.db, sale.id)

        siblings = await self.list_by_sale(sale.id)
        active = [d for d in siblings if d.status not in INACTIVE_STATUSES]
        claimed_units = {unit_id for d in active for unit_id in d.reserved_unit_ids}
        scheduled_qty: Dict[str, int] = {}
        for sibling in active:
            for item in sibling.items:
                scheduled_qty[item.product_id] = scheduled_qty.get(item.product_id, 0) + item.quantity

        items: List[DeliveryItem] = []
        requested_units = set()
        for position, selection in enumerate(data.items, start=1):
            sale_item = sale.find_item(selection.product_id)
            if not sale_item:
                raise ProductNotInSale(
                    f"Product {selection.product_id} is not part of sale {sale.sale_number}",
                    {"product_id": selection.product_id, "sale_id": str(sale.id)}
                )
            self._validate_selection(sale, sale_item, selection, scheduled_qty, claimed_units, requested_units)
            requested_units.update(selection.reserved_unit_ids)
            scheduled_qty[selection.product_id] = scheduled_qty.get(selection.product_id, 0) + selection.quantity

            items.append(DeliveryItem(
                position=position,
                product_id=sale_item.product_id,
                sku=sale_item.sku,
                brand=sale_item.brand,
                name=sale_item.name,
                presentation=sale_item.presentation,
                quantity=selection.quantity,
                reserved_unit_ids=list(selection.reserved_unit_ids),
                unit_price=sale_item.unit_price,
                subtotal=sale_item.unit_price * selection.quantity,
            ))

        code = await self.sequences.next_code(settings.DELIVERY_CODE_PREFIX, str(business_now().year))

        delivery = Delivery(
            code=code,
            sale_id=sale.id,
            sale_number=sale.sale_number,
            delivery_index=len(siblings) + 1,
            total_deliveries=data.total_deliveries,
            # Carrier snapshot
            carrier_id=carrier.id,
            carrier_name=carrier.name,
            carrier_type=carrier.carrier_type,
            carrier_phone=carrier.phone,
            external_courier=carrier.external_courier,
            # Customer snapshot
            customer_name=sale.customer_name,
            customer_phone=sale.customer_phone,
            customer_email=sale.customer_email,
            address=data.address,
            district=data.district,
            reference=data.reference,
            items=items,
            item_count=sum(item.quantity for item in items),
            subtotal_amount=sum((item.subtotal for item in items), ZERO),
            collection_pending=data.collection_pending,
            amount_to_collect=data.amount_to_collect,
            expected_payment_method=data.expected_payment_method,
            carrier_cost=data.carrier_cost,
            status=DeliveryStatus.SCHEDULED.value,
            scheduled_at=ensure_utc(data.scheduled_at),
            scheduled_time=data.scheduled_time,
            notes=data.notes,
            created_by=actor,
            updated_by=actor,
        )
        self.db.add(delivery)
        await self.db.flush()

        await self.sales.update_status(sale.id, SaleStatus.IN_DELIVERY.value, actor)
        await self.db.commit()

        logger.info(
            f"[Delivery {code}] Scheduled for sale {sale.sale_number} "
            f"(#{delivery.delivery_index}, {delivery.item_count} units, carrier {carrier.name})"
        )
        return await self.require_delivery(delivery.id)

    @staticmethod
    def _validate_selection(sale, sale_item, selection, scheduled_qty, claimed_units, requested_units) -> None:
        details = {"product_id": selection.product_id, "sale_id": str(sale.id)}
        if selection.quantity <= 0:
            raise InvalidQuantity("Quantity must be greater than zero", details)

        already = scheduled_qty.get(selection.product_id, 0)
        if already + selection.quantity > sale_item.quantity:
            raise InvalidQuantity(
                f"Only {sale_item.quantity - already} of {sale_item.sku} left to schedule, "
                f"requested {selection.quantity}",
                {**details, "available": sale_item.quantity - already}
            )

        unit_ids = list(selection.reserved_unit_ids)
        if unit_ids and len(unit_ids) != selection.quantity:
            raise InvalidQuantity(
                f"{len(unit_ids)} reserved units given for quantity {selection.quantity}", details
            )
        if len(set(unit_ids)) != len(unit_ids):
            raise InvalidQuantity("Reserved units are repeated", details)

        overlap = (claimed_units | requested_units) & set(unit_ids)
        if overlap:
            raise InvalidQuantity(
                "Reserved units already claimed by another delivery of this sale",
                {**details, "unit_ids": sorted(overlap)}
            )

    # ==================== TRANSITIONS ====================

    async def _get_for_update(self, delivery_id: uuid.UUID) -> Delivery:
        """Re-read the delivery under a row lock before checking its state."""
        result = await self.db.execute(
            self._base_query()
            .where(Delivery.id == delivery_id)
            .with_for_update(of=Delivery)
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found", {"delivery_id": str(delivery_id)})
        return delivery

    async def mark_en_route(self, delivery_id: uuid.UUID, actor: Optional[str] = None) -> Delivery:
        """SCHEDULED -> EN_ROUTE, stamping the departure time."""
        async with delivery_locks.hold(delivery_id):
            delivery = await self._get_for_update(delivery_id)
            if not is_status(delivery.status, DeliveryStatus.SCHEDULED):
                raise StateConflictError(
                    f"Delivery {delivery.code} cannot go en route from {delivery.status}",
                    current_status=delivery.status
                )

            delivery.status = DeliveryStatus.EN_ROUTE.value
            delivery.departed_at = utc_now()
            delivery.updated_by = actor
            await self.db.commit()

        logger.info(f"[Delivery {delivery.code}] En route")
        return await self.require_delivery(delivery_id)

    async def record_outcome(
        self,
        delivery_id: uuid.UUID,
        data: DeliveryOutcome,
        actor: Optional[str] = None
    ) -> Delivery:
        """
        Settle a delivery attempt.

        Only SCHEDULED, EN_ROUTE and RESCHEDULED deliveries accept an
        outcome; a second call on a settled delivery raises
        StateConflictError before anything is written.
        """
        async with delivery_locks.hold(delivery_id):
            delivery = await self._get_for_update(delivery_id)
            if not status_in(delivery.status, *OPEN_STATUSES):
                raise StateConflictError(
                    f"Delivery {delivery.code} already settled as {delivery.status}",
                    current_status=delivery.status
                )
            if not data.success and data.reschedule and data.new_scheduled_at is None:
                raise ValidationError("new_scheduled_at is required when rescheduling", {"delivery_id": str(delivery_id)})

            if data.success:
                steps = self._apply_success(delivery, data, actor)
            else:
                steps = self._apply_failure(delivery, data, actor)

            # Primary state write, never reversed by bookkeeping failures
            await self.db.commit()
            code = delivery.code
            logger.info(f"[Delivery {code}] Outcome recorded: {delivery.status}")

            for step, payload in steps:
                await self.bookkeeping.run_step(delivery_id, code, step, payload, actor)
            await self.db.commit()

        return await self.require_delivery(delivery_id)

    def _apply_success(self, delivery: Delivery, data: DeliveryOutcome, actor: Optional[str]) -> List[Tuple[BookkeepingStep, Dict[str, Any]]]:
        delivered_at = ensure_utc(data.delivered_at) or utc_now()
        duration = None
        if delivery.departed_at:
            duration = minutes_between(delivery.departed_at, delivered_at)

        delivery.status = DeliveryStatus.DELIVERED.value
        delivery.delivered_at = delivered_at
        delivery.delivery_duration_minutes = duration
        delivery.updated_by = actor
        if data.photo_url:
            delivery.photo_url = data.photo_url
        if data.signature_url:
            delivery.signature_url = data.signature_url
        if data.delivery_notes:
            delivery.delivery_notes = data.delivery_notes
        if data.payment_collected is not None:
            delivery.payment_collected = data.payment_collected
        if data.amount_collected is not None:
            delivery.amount_collected = data.amount_collected
        if data.payment_method_received:
            delivery.payment_method_received = data.payment_method_received

        amount_collected = data.amount_collected or ZERO
        delivery_ref = {"delivery_id": str(delivery.id), "delivery_code": delivery.code}
        steps: List[Tuple[BookkeepingStep, Dict[str, Any]]] = []

        unit_ids = delivery.reserved_unit_ids
        if unit_ids:
            steps.append((BookkeepingStep.CONFIRM_UNITS, {
                **delivery_ref,
                "unit_ids": unit_ids,
                "sale_id": str(delivery.sale_id),
                "sale_number": delivery.sale_number,
                "amount": str(delivery.subtotal_amount),
            }))
        steps.append((BookkeepingStep.DISTRIBUTION_EXPENSE, delivery_ref))
        steps.append((BookkeepingStep.LEDGER_ENTRY, {
            **delivery_ref,
            "kind": LedgerEntryKind.SUCCESSFUL_DELIVERY.value,
            "amount_collected": str(amount_collected),
        }))
        steps.append((BookkeepingStep.CARRIER_METRICS, {
            **delivery_ref,
            "carrier_id": str(delivery.carrier_id),
            "success": True,
            "duration_minutes": duration or 0,
            "cost": str(delivery.carrier_cost or ZERO),
            "district": delivery.district,
        }))
        steps.append((BookkeepingStep.SALE_RECONCILE, {**delivery_ref, "sale_id": str(delivery.sale_id)}))
        return steps

    def _apply_failure(self, delivery: Delivery, data: DeliveryOutcome, actor: Optional[str]) -> List[Tuple[BookkeepingStep, Dict[str, Any]]]:
        reason = FailureReason(data.failure_reason or FailureReason.OTHER).value

        delivery.failure_reason = reason
        delivery.failure_description = data.failure_description
        delivery.updated_by = actor
        if data.reschedule:
            delivery.status = DeliveryStatus.RESCHEDULED.value
            delivery.scheduled_at = ensure_utc(data.new_scheduled_at)
        else:
            delivery.status = DeliveryStatus.FAILED.value

        delivery_ref = {"delivery_id": str(delivery.id), "delivery_code": delivery.code}
        steps: List[Tuple[BookkeepingStep, Dict[str, Any]]] = []

        unit_ids = delivery.reserved_unit_ids
        if not data.reschedule and unit_ids:
            steps.append((BookkeepingStep.RELEASE_UNITS, {
                **delivery_ref,
                "unit_ids": unit_ids,
                "reason": f"delivery failed: {reason}",
            }))
        steps.append((BookkeepingStep.LEDGER_ENTRY, {
            **delivery_ref,
            "kind": LedgerEntryKind.FAILED_DELIVERY.value,
            "reason": reason,
        }))
        steps.append((BookkeepingStep.CARRIER_METRICS, {
            **delivery_ref,
            "carrier_id": str(delivery.carrier_id),
            "success": False,
            "duration_minutes": 0,
            "cost": "0",
            "district": delivery.district,
        }))
        return steps

    async def cancel(self, delivery_id: uuid.UUID, reason: str, actor: Optional[str] = None) -> Delivery:
        """
        Cancel an open delivery.

        No ledger entry and no metrics. Reserved units go back to stock when
        RELEASE_UNITS_ON_CANCEL is set.
        """
        async with delivery_locks.hold(delivery_id):
            delivery = await self._get_for_update(delivery_id)
            if not status_in(delivery.status, *OPEN_STATUSES):
                raise StateConflictError(
                    f"Delivery {delivery.code} cannot be cancelled from {delivery.status}",
                    current_status=delivery.status
                )

            delivery.status = DeliveryStatus.CANCELLED.value
            delivery.cancellation_reason = reason
            delivery.cancelled_at = utc_now()
            delivery.updated_by = actor
            await self.db.commit()
            logger.info(f"[Delivery {delivery.code}] Cancelled: {reason}")

            unit_ids = delivery.reserved_unit_ids
            if settings.RELEASE_UNITS_ON_CANCEL and unit_ids:
                await self.bookkeeping.run_step(
                    delivery.id,
                    delivery.code,
                    BookkeepingStep.RELEASE_UNITS,
                    {
                        "delivery_id": str(delivery.id),
                        "delivery_code": delivery.code,
                        "unit_ids": unit_ids,
                        "reason": f"delivery cancelled: {reason}",
                    },
                    actor,
                )
                await self.db.commit()

        return await self.require_delivery(delivery_id)

    # ==================== DOCUMENTS & TRACKING ====================

    async def register_tracking_number(self, delivery_id: uuid.UUID, tracking_number: str, actor: Optional[str] = None) -> Delivery:
        """Attach the external courier's tracking number."""
        delivery = await self.require_delivery(delivery_id)
        if is_status(delivery.status, DeliveryStatus.CANCELLED):
            raise StateConflictError(
                f"Delivery {delivery.code} is cancelled", current_status=delivery.status
            )
        delivery.tracking_number = tracking_number
        delivery.updated_by = actor
        await self.db.commit()

        logger.info(f"[Delivery {delivery.code}] Tracking number {tracking_number}")
        return delivery

    async def register_document(
        self,
        delivery_id: uuid.UUID,
        kind: DeliveryDocumentKind,
        url: str,
        actor: Optional[str] = None
    ) -> Delivery:
        """Store the URL of a PDF generated for the delivery."""
        delivery = await self.require_delivery(delivery_id)
        if DeliveryDocumentKind(kind) == DeliveryDocumentKind.CARRIER_GUIDE:
            delivery.carrier_guide_url = url
        else:
            delivery.customer_receipt_url = url
        delivery.updated_by = actor
        await self.db.commit()
        return delivery

    # ==================== STATS ====================

    async def stats(self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> DeliveryStats:
        """Aggregates over deliveries scheduled in [date_from, date_to]."""
        stmt = select(Delivery)
        if date_from:
            stmt = stmt.where(Delivery.scheduled_at >= ensure_utc(date_from))
        if date_to:
            stmt = stmt.where(Delivery.scheduled_at <= ensure_utc(date_to))
        deliveries = list((await self.db.execute(stmt)).scalars().all())

        def count(status: DeliveryStatus) -> int:
            return sum(1 for d in deliveries if is_status(d.status, status))

        successful = count(DeliveryStatus.DELIVERED)
        failed = count(DeliveryStatus.FAILED)
        durations = [d.delivery_duration_minutes for d in deliveries if d.delivery_duration_minutes is not None]
        total_cost = sum((d.carrier_cost or ZERO for d in deliveries if d.status == DeliveryStatus.DELIVERED.value), ZERO)

        by_carrier: Dict[uuid.UUID, CarrierStats] = {}
        by_district: Dict[str, DistrictStats] = {}
        for d in deliveries:
            row = by_carrier.setdefault(d.carrier_id, CarrierStats(
                carrier_id=d.carrier_id, carrier_name=d.carrier_name,
                deliveries=0, successful=0, failed=0, success_rate=0.0, total_cost=ZERO,
            ))
            row.deliveries += 1
            if d.status == DeliveryStatus.DELIVERED.value:
                row.successful += 1
                row.total_cost += d.carrier_cost or ZERO
            elif d.status == DeliveryStatus.FAILED.value:
                row.failed += 1

            district = d.district or NO_DISTRICT
            zone = by_district.setdefault(district, DistrictStats(
                district=district, deliveries=0, successful=0, success_rate=0.0,
            ))
            zone.deliveries += 1
            if d.status == DeliveryStatus.DELIVERED.value:
                zone.successful += 1

        for row in by_carrier.values():
            row.success_rate = round(row.successful / row.deliveries * 100, 2)
        for zone in by_district.values():
            zone.success_rate = round(zone.successful / zone.deliveries * 100, 2)

        return DeliveryStats(
            total=len(deliveries),
            successful=successful,
            failed=failed,
            rescheduled=count(DeliveryStatus.RESCHEDULED),
            cancelled=count(DeliveryStatus.CANCELLED),
            pending=sum(1 for d in deliveries if status_in(d.status, *OPEN_STATUSES)),
            success_rate=round(successful / len(deliveries) * 100, 2) if deliveries else 0.0,
            average_duration_minutes=round(sum(durations) / len(durations), 2) if durations else None,
            total_carrier_cost=total_cost,
            average_carrier_cost=(total_cost / successful).quantize(Decimal("0.01")) if successful else ZERO,
            by_carrier=sorted(by_carrier.values(), key=lambda r: r.deliveries, reverse=True),
            by_district=sorted(by_district.values(), key=lambda r: r.deliveries, reverse=True),
        )
