"""FastAPI routers package."""

from .booking import router as booking_router
from .calendar import router as calendar_router
from .health import router as health_router
from .ledger import router as ledger_router
from .marketplace import router as marketplace_router
from .metrics import router as metrics_router
from .pricing import router as pricing_router

__all__ = [
    "booking_router",
    "calendar_router",
    "health_router",
    "ledger_router",
    "marketplace_router",
    "metrics_router",
    "pricing_router",
]
