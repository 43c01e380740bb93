from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from app.database.database import engine, Base

# Import routers
from app.modules.sales.router import sales_router
from app.modules.stock.router import stock_router
from app.modules.prices.router import prices_router
from app.modules.pos.routers import cash_registers_router

# Import models for table creation
import app.modules.auth.models
import app.modules.branches.models
import app.modules.clients.models
import app.modules.products.models
import app.modules.prices.models
import app.modules.stock.models
import app.modules.movements.models
import app.modules.notifications.models
import app.modules.goals.models
import app.modules.sales.models
import app.modules.pos.models

from app.core.config import settings
from app.modules.sales.exceptions import SaleError

# Configure logging
logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "").upper(), None) or (
        logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG
    ),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SALE_ERROR_STATUS = {
    "InvalidPrice": status.HTTP_400_BAD_REQUEST,
    "MismatchedEntity": status.HTTP_400_BAD_REQUEST,
    "InvalidQuantity": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "PriceClaimConflict": status.HTTP_409_CONFLICT,
    "InsufficientStock": status.HTTP_409_CONFLICT,
    "RegisterRequired": status.HTTP_409_CONFLICT,
    "Unexpected": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# FastAPI app
app = FastAPI(
    title="POS Engine API",
    description="Inventario por lotes FIFO y ventas de punto de venta",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SaleError)
async def sale_error_handler(request: Request, exc: SaleError):
    return JSONResponse(
        status_code=SALE_ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=exc.to_dict(),
    )


# Include routers
app.include_router(sales_router)
app.include_router(stock_router)
app.include_router(prices_router)
app.include_router(cash_registers_router)

# Create database tables (only for development)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=engine)


@app.get("/")
async def read_root():
    return {
        "message": "POS Engine API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("POS Engine API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("POS Engine API shutting down...")
