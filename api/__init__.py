"""REST API for BrillPrime.

This module provides HTTP endpoints for:
- Users, addresses and profiles
- Products, merchants and reviews
- Cart, orders and payments
- Notifications and chat
- KYC document submission and review
- Admin metrics and analytics ingestion
- Real-time updates via WebSocket

Every response uses the {success, data} / {success: false, error} envelope.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import realtime
from config import settings_conf

from .responses import failure

logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    # Database setup is handled in __main__.py
    yield
    logger.info("Shutting down API...")
    await realtime.close()

# Create FastAPI app
app = FastAPI(
    title="BrillPrime API",
    description="REST API for the BrillPrime multi-role commerce platform",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(exc.detail),
        headers=getattr(exc, 'headers', None)
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    content = failure("Invalid request")
    content['details'] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=422, content=content)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=failure("Internal server error"))

# Bucket files (KYC documents, product images)
app.mount(
    "/storage",
    StaticFiles(directory=settings_conf['storage_root'], check_dir=False),
    name="storage"
)

# Import and include all routers
from .system import router as system_router
from .users import router as users_router
from .products import router as products_router
from .merchants import router as merchants_router
from .cart import router as cart_router
from .orders import router as orders_router
from .payments import router as payments_router
from .notifications import router as notifications_router
from .chat import router as chat_router
from .kyc import router as kyc_router
from .admin import router as admin_router
from .analytics import router as analytics_router
from .websockets import router as websocket_router

app.include_router(system_router)
app.include_router(users_router)
app.include_router(products_router)
app.include_router(merchants_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(notifications_router)
app.include_router(chat_router)
app.include_router(kyc_router)
app.include_router(admin_router)
app.include_router(analytics_router)
app.include_router(websocket_router)
