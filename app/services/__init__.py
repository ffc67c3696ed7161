# Services module
from app.services.code_sequence_service import CodeSequenceService
from app.services.carrier_service import CarrierService
from app.services.sale_service import SaleService
from app.services.inventory_unit_service import InventoryUnitService
from app.services.expense_service import ExpenseService
from app.services.carrier_ledger_service import CarrierLedgerService
from app.services.sale_fulfillment_service import SaleFulfillmentService
from app.services.bookkeeping_service import BookkeepingService

# Orchestration
from app.services.delivery_service import DeliveryService

__all__ = [
    "CodeSequenceService",
    "CarrierService",
    "SaleService",
    "InventoryUnitService",
    "ExpenseService",
    "CarrierLedgerService",
    "SaleFulfillmentService",
    "BookkeepingService",
    # Orchestration
    "DeliveryService",
]
