# Models module
from app.models.carrier import Carrier, CarrierType, ExternalCourier
from app.models.sale import Sale, SaleItem, SaleStatus
from app.models.inventory import InventoryUnit, InventoryUnitStatus
from app.models.delivery import (
    Delivery,
    DeliveryItem,
    DeliveryStatus,
    FailureReason,
    PaymentMethod,
)
from app.models.carrier_ledger import CarrierLedgerEntry, LedgerEntryKind
from app.models.expense import Expense, ExpenseCategory, ExpenseStatus
from app.models.code_sequence import CodeSequence
from app.models.bookkeeping import BookkeepingTask, BookkeepingStep, BookkeepingTaskStatus

__all__ = [
    "Carrier",
    "CarrierType",
    "ExternalCourier",
    "Sale",
    "SaleItem",
    "SaleStatus",
    "InventoryUnit",
    "InventoryUnitStatus",
    # Delivery
    "Delivery",
    "DeliveryItem",
    "DeliveryStatus",
    "FailureReason",
    "PaymentMethod",
    # Ledger / expenses
    "CarrierLedgerEntry",
    "LedgerEntryKind",
    "Expense",
    "ExpenseCategory",
    "ExpenseStatus",
    # Infrastructure
    "CodeSequence",
    "BookkeepingTask",
    "BookkeepingStep",
    "BookkeepingTaskStatus",
]
