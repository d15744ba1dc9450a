from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import sync_engine, Base

# Import middleware
from app.common.middleware import SecurityHeadersMiddleware, RequestLoggingMiddleware

# Import routers
from app.modules.backups import router as export_router

# Import models for table creation
import app.modules.auth.models
import app.modules.company.models
import app.modules.clients.models
import app.modules.products.models
import app.modules.orders.models
import app.modules.invoices.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Gestão Técnica API",
    description="Multi-tenant service management API: backup and reporting exports",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

# Include routers
app.include_router(export_router, prefix="/api/v1")

@app.get("/")
async def read_root():
    return {
        "message": "Gestão Técnica API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}

@app.on_event("startup")
async def startup_event():
    logger.info("Gestão Técnica API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Export timezone: {settings.EXPORT_TIMEZONE}")

    # Create database tables (only for development - schema is owned by migrations elsewhere)
    if settings.ENVIRONMENT == "development":
        try:
            Base.metadata.create_all(bind=sync_engine)
        except Exception as e:
            logger.warning(f"Table creation skipped or failed: {e}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Gestão Técnica API shutting down...")
