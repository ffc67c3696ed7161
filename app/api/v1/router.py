from fastapi import APIRouter

from app.api.v1.endpoints import (
    deliveries,
    carriers,
    sales,
)


api_router = APIRouter(prefix="/api/v1")

# ==================== Deliveries ====================
api_router.include_router(
    deliveries.router,
    prefix="/deliveries",
    tags=["Deliveries"]
)

# ==================== Carriers & Ledger ====================
api_router.include_router(
    carriers.router,
    prefix="/carriers",
    tags=["Carriers"]
)

# ==================== Sale Fulfillment ====================
api_router.include_router(
    sales.router,
    prefix="/sales",
    tags=["Sales"]
)
