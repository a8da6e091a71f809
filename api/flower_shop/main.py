# flower_shop/main.py
# Flower Shop - order lifecycle & inventory API
from __future__ import annotations
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flower_shop.settings import settings
from flower_shop.database import init_db, close_db, check_db_health, create_all, get_database_url
from flower_shop.errors import ShopError
from flower_shop.models import field_errors
from flower_shop.routers.orders import router as orders_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from flower_shop.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    if settings.DB_CREATE_TABLES or get_database_url().startswith("sqlite"):
        await create_all()
    logger.info("Flower Shop API started (environment=%s)", settings.ENVIRONMENT)
    yield
    await close_db()
    logger.info("Flower Shop API stopped")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Flower Shop API",
    version="1.0.0",
    description="Flower shop orders with transactional inventory",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders_router)

# ---------------------------------------------------------
# Error handlers
# ---------------------------------------------------------
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if not exc.is_client_error:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(settings.is_development))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = field_errors(exc)
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "code": "VALIDATION_FAILED", "errors": errors},
    )

# ---------------------------------------------------------
# Endpoints
# ---------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint with database status."""
    result = {"status": "ok", "version": "1.0.0"}
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
    return result
