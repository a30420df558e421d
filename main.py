"""
AgriMart - Application Entry Point
====================================
FastAPI app initialization, exception handling, and router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine
from common.exceptions import AgriMartError

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("agrimart.app")
scheduler_logger = logging.getLogger("agrimart.scheduler")

# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.user.models import User  # noqa: F401, E402
from modules.admin.models import SystemSetting  # noqa: F401, E402
from modules.catalog.models import Product  # noqa: F401, E402
from modules.coupon.models import (  # noqa: F401, E402
    Coupon, CouponUser, CouponProduct, CouponCategory, CouponRegion, CouponUsage,
)
from modules.cart.models import Cart, CartItem, SavedItem  # noqa: F401, E402
from modules.order.models import Order, OrderItem, OrderStatusLog, ReturnRequest  # noqa: F401, E402
from modules.advisory.models import CropAdvisory, AdvisoryRegion  # noqa: F401, E402

# ==========================================
# Import routers
# ==========================================
from modules.user.routes import router as user_router  # noqa: E402
from modules.admin.routes import router as admin_settings_router  # noqa: E402
from modules.catalog.routes import router as catalog_router  # noqa: E402
from modules.catalog.admin_routes import router as catalog_admin_router  # noqa: E402
from modules.cart.routes import router as cart_router  # noqa: E402
from modules.coupon.routes import router as coupon_router  # noqa: E402
from modules.coupon.admin_routes import router as coupon_admin_router  # noqa: E402
from modules.order.routes import router as order_router  # noqa: E402
from modules.order.admin_routes import router as order_admin_router  # noqa: E402
from modules.advisory.routes import router as advisory_router  # noqa: E402
from modules.advisory.admin_routes import router as advisory_admin_router  # noqa: E402


# ==========================================
# Background Scheduler: Abandoned Cart Cleanup
# ==========================================
def _cleanup_abandoned_carts():
    """Background job: empty carts untouched for ABANDONED_CART_DAYS."""
    db = SessionLocal()
    try:
        from modules.cart.service import cart_service
        count = cart_service.cleanup_abandoned_carts(db)
        db.commit()
        if count:
            scheduler_logger.info(f"Abandoned {count} idle carts")
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Cart cleanup error: {e}")
    finally:
        db.close()


scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)

    if settings.SCHEDULER_ENABLED:
        scheduler.add_job(_cleanup_abandoned_carts, 'interval', hours=6, id='abandoned_carts')
        scheduler.start()
        scheduler_logger.info("Background scheduler started (abandoned carts: 6h)")
    yield
    if scheduler.running:
        scheduler.shutdown()
        scheduler_logger.info("Background scheduler stopped")


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="AgriMart",
    description="Agricultural storefront: catalog, cart, coupons, orders, crop advisories",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handler: business errors → JSON
# ==========================================
@app.exception_handler(AgriMartError)
async def agrimart_error_handler(request: Request, exc: AgriMartError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


# ==========================================
# Register Routers
# ==========================================
app.include_router(user_router)
app.include_router(admin_settings_router)
app.include_router(catalog_router)
app.include_router(catalog_admin_router)
app.include_router(cart_router)
app.include_router(coupon_router)
app.include_router(coupon_admin_router)
app.include_router(order_router)
app.include_router(order_admin_router)
app.include_router(advisory_router)
app.include_router(advisory_admin_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}
