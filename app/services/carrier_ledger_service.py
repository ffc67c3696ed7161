"""
Carrier ledger service.

Append-only running balance per carrier. Positive balance means the
business owes the carrier; negative means the carrier collected more than
it billed and owes the business.

Appends for one carrier are serialized by a keyed asyncio lock plus a row
lock on the carrier, so every entry's balance_before is the balance_after
of the entry before it. The per-carrier sequence column orders entries.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidAmount
from app.core.locks import carrier_locks
from app.models.carrier_ledger import CarrierLedgerEntry, LedgerEntryKind
from app.models.delivery import Delivery
from app.schemas.carrier import (
    CarrierAccountSummary,
    CarrierWithBalance,
    LedgerEntryResponse,
)
from app.services.carrier_service import CarrierService


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def net_movement_for(
    kind: LedgerEntryKind,
    carrier_cost: Decimal = ZERO,
    amount_collected: Optional[Decimal] = None,
    payment_amount: Optional[Decimal] = None
) -> Decimal:
    """Kind-specific balance change."""
    if kind == LedgerEntryKind.SUCCESSFUL_DELIVERY:
        return _money(carrier_cost) - _money(amount_collected)
    if kind == LedgerEntryKind.FAILED_DELIVERY:
        # Failed deliveries are never billed
        return ZERO
    if kind == LedgerEntryKind.CARRIER_PAYMENT:
        return -_money(payment_amount)
    raise ValueError(f"Unknown ledger entry kind: {kind}")


class CarrierLedgerService:
    """Service for the per-carrier running balance."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.carriers = CarrierService(db)

    # ==================== READS ====================

    async def _latest_entry(self, carrier_id: uuid.UUID) -> Optional[CarrierLedgerEntry]:
        result = await self.db.execute(
            select(CarrierLedgerEntry)
            .where(CarrierLedgerEntry.carrier_id == carrier_id)
            .order_by(CarrierLedgerEntry.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def current_balance(self, carrier_id: uuid.UUID) -> Decimal:
        """balance_after of the most recent entry, or 0."""
        latest = await self._latest_entry(carrier_id)
        return latest.balance_after if latest else ZERO

    async def list_entries(self, carrier_id: uuid.UUID, limit: int = 50) -> List[CarrierLedgerEntry]:
        """Most recent entries first."""
        result = await self.db.execute(
            select(CarrierLedgerEntry)
            .where(CarrierLedgerEntry.carrier_id == carrier_id)
            .order_by(CarrierLedgerEntry.sequence.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_delivery(self, delivery_id: uuid.UUID) -> List[CarrierLedgerEntry]:
        result = await self.db.execute(
            select(CarrierLedgerEntry)
            .where(CarrierLedgerEntry.delivery_id == delivery_id)
            .order_by(CarrierLedgerEntry.created_at)
        )
        return list(result.scalars().all())

    async def account_summary(self, carrier_id: uuid.UUID) -> CarrierAccountSummary:
        """
        Fold over the last LEDGER_SUMMARY_LIMIT entries.

        Pure aggregation over ledger rows; nothing here is stored.
        """
        entries = await self.list_entries(carrier_id, limit=settings.LEDGER_SUMMARY_LIMIT)

        total_cost = ZERO
        total_collected = ZERO
        total_paid = ZERO
        total_commissions = ZERO
        successful = 0
        failed = 0

        for entry in entries:
            if entry.kind == LedgerEntryKind.SUCCESSFUL_DELIVERY.value:
                total_cost += entry.carrier_cost or ZERO
                total_collected += entry.amount_collected or ZERO
                total_commissions += entry.commission or ZERO
                successful += 1
            elif entry.kind == LedgerEntryKind.FAILED_DELIVERY.value:
                failed += 1
            elif entry.kind == LedgerEntryKind.CARRIER_PAYMENT.value:
                total_paid += entry.payment_amount or ZERO

        carrier_name = entries[0].carrier_name if entries else None
        if carrier_name is None:
            carrier = await self.carriers.get_carrier(carrier_id)
            carrier_name = carrier.name if carrier else None

        return CarrierAccountSummary(
            carrier_id=carrier_id,
            carrier_name=carrier_name,
            current_balance=entries[0].balance_after if entries else ZERO,
            total_cost=total_cost,
            total_collected=total_collected,
            total_paid=total_paid,
            total_commissions=total_commissions,
            successful_deliveries=successful,
            failed_deliveries=failed,
            entries_considered=len(entries),
            recent_entries=[
                LedgerEntryResponse.model_validate(entry)
                for entry in entries[:settings.LEDGER_RECENT_ENTRIES]
            ],
        )

    async def carriers_with_balance(self) -> List[CarrierWithBalance]:
        """Carriers whose latest balance is non-zero, largest absolute balance first."""
        latest = (
            select(
                CarrierLedgerEntry.carrier_id,
                func.max(CarrierLedgerEntry.sequence).label("max_sequence")
            )
            .group_by(CarrierLedgerEntry.carrier_id)
            .subquery()
        )
        result = await self.db.execute(
            select(CarrierLedgerEntry).join(
                latest,
                (CarrierLedgerEntry.carrier_id == latest.c.carrier_id)
                & (CarrierLedgerEntry.sequence == latest.c.max_sequence)
            )
        )

        balances = [
            CarrierWithBalance(
                carrier_id=entry.carrier_id,
                carrier_name=entry.carrier_name,
                balance=entry.balance_after,
                last_entry_at=entry.created_at,
            )
            for entry in result.scalars().all()
            if entry.balance_after != ZERO
        ]
        balances.sort(key=lambda item: abs(item.balance), reverse=True)
        return balances

    # ==================== APPENDS ====================

    async def append_entry(
        self,
        carrier_id: uuid.UUID,
        kind: LedgerEntryKind,
        carrier_cost: Decimal = ZERO,
        amount_collected: Optional[Decimal] = None,
        payment_amount: Optional[Decimal] = None,
        commission: Optional[Decimal] = None,
        delivery: Optional[Delivery] = None,
        expense_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None
    ) -> CarrierLedgerEntry:
        """
        Append one immutable entry.

        balance_before is the latest entry's balance_after (0 for the first
        entry) and balance_after = balance_before + net movement.

        Raises:
            CarrierNotFound: carrier does not exist
            InvalidAmount: negative cost/collection or non-positive payment
        """
        kind = LedgerEntryKind(kind)
        if _money(carrier_cost) < ZERO or _money(amount_collected) < ZERO:
            raise InvalidAmount("Ledger amounts cannot be negative", {"carrier_id": str(carrier_id)})
        if kind == LedgerEntryKind.CARRIER_PAYMENT and _money(payment_amount) <= ZERO:
            raise InvalidAmount("Payment amount must be greater than zero", {"carrier_id": str(carrier_id)})
        if kind == LedgerEntryKind.FAILED_DELIVERY:
            carrier_cost = ZERO

        # Held until the caller commits, so the next append sees this balance
        await carrier_locks.hold_for_transaction(self.db, carrier_id)

        carrier = await self.carriers.get_carrier_for_update(carrier_id)
        latest = await self._latest_entry(carrier_id)

        balance_before = latest.balance_after if latest else ZERO
        net = net_movement_for(kind, carrier_cost, amount_collected, payment_amount)

        entry = CarrierLedgerEntry(
            carrier_id=carrier_id,
            carrier_name=delivery.carrier_name if delivery else carrier.name,
            sequence=(latest.sequence + 1) if latest else 1,
            kind=kind.value,
            delivery_id=delivery.id if delivery else None,
            delivery_code=delivery.code if delivery else None,
            sale_id=delivery.sale_id if delivery else None,
            sale_number=delivery.sale_number if delivery else None,
            expense_id=expense_id,
            carrier_cost=_money(carrier_cost),
            amount_collected=_money(amount_collected) if amount_collected else None,
            commission=_money(commission) if commission else None,
            payment_amount=_money(payment_amount) if payment_amount else None,
            balance_before=balance_before,
            net_movement=net,
            balance_after=balance_before + net,
            district=delivery.district if delivery else None,
            notes=notes,
            created_by=actor,
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            f"[Carrier {carrier.code}] Ledger #{entry.sequence} {entry.kind}: "
            f"{balance_before} {'+' if net >= 0 else '-'} {abs(net)} = {entry.balance_after}"
        )
        return entry

    async def record_successful_delivery(
        self,
        delivery: Delivery,
        amount_collected: Optional[Decimal] = None,
        expense_id: Optional[uuid.UUID] = None,
        actor: Optional[str] = None
    ) -> CarrierLedgerEntry:
        """Bill the delivery cost and offset what the carrier collected."""
        cost = _money(delivery.carrier_cost)
        collected = _money(amount_collected)

        notes = f"Delivery completed. Cost: {cost:.2f}"
        if collected > ZERO:
            notes += f", Collected: {collected:.2f}"

        commission = None
        carrier = await self.carriers.get_carrier(delivery.carrier_id)
        if carrier and carrier.commission_percentage and collected > ZERO:
            commission = collected * Decimal(str(carrier.commission_percentage)) / 100

        return await self.append_entry(
            delivery.carrier_id,
            LedgerEntryKind.SUCCESSFUL_DELIVERY,
            carrier_cost=cost,
            amount_collected=collected if collected > ZERO else None,
            commission=commission,
            delivery=delivery,
            expense_id=expense_id,
            notes=notes,
            actor=actor,
        )

    async def record_failed_delivery(
        self,
        delivery: Delivery,
        reason: str,
        actor: Optional[str] = None
    ) -> CarrierLedgerEntry:
        """History-only entry: zero cost, zero movement."""
        return await self.append_entry(
            delivery.carrier_id,
            LedgerEntryKind.FAILED_DELIVERY,
            delivery=delivery,
            notes=f"Delivery failed: {reason}",
            actor=actor,
        )

    async def record_payment(
        self,
        carrier_id: uuid.UUID,
        amount: Decimal,
        notes: Optional[str] = None,
        actor: Optional[str] = None
    ) -> CarrierLedgerEntry:
        """Payment to the carrier, reduces what the business owes."""
        if _money(amount) <= ZERO:
            raise InvalidAmount("Payment amount must be greater than zero", {"amount": str(amount)})
        return await self.append_entry(
            carrier_id,
            LedgerEntryKind.CARRIER_PAYMENT,
            payment_amount=amount,
            notes=notes or f"Payment to carrier: {_money(amount):.2f}",
            actor=actor,
        )
