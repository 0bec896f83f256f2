from fastapi import APIRouter

from stockledger.app.api.v1.endpoints.health import router as health_router
from stockledger.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from stockledger.app.api.v1.endpoints.receiving import router as receiving_router
from stockledger.app.api.v1.endpoints.routing import router as routing_router
from stockledger.app.api.v1.endpoints.stock import router as stock_router
from stockledger.app.api.v1.endpoints.stock_movements import router as stock_movements_router
from stockledger.app.api.v1.endpoints.withdrawals import router as withdrawals_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(stock_router, tags=["stock"])
router.include_router(stock_movements_router, tags=["stock_movements"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(receiving_router, tags=["receiving"])
router.include_router(withdrawals_router, tags=["withdrawals"])
router.include_router(routing_router, tags=["routing"])
