from .bulk import router as bulk_router
from .orders import router as orders_router
from .drivers import router as drivers_router
from .wallet import router as wallet_router

__all__ = [
    "bulk_router",
    "orders_router",
    "drivers_router",
    "wallet_router",
]
