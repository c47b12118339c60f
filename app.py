from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware
from fastapi.responses import JSONResponse
from config import settings
from utils.exceptions import DispatchError
from utils.responses import error_response
import uvicorn
import logging
import traceback
import os

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import routes
from routes import (
    bulk_router,
    orders_router,
    drivers_router,
    wallet_router,
)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Dispatch Ledger - order lifecycle and driver settlement API",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,  # Must be False when allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Enforce HTTPS when running behind a TLS-terminating proxy
if os.getenv("FORCE_HTTPS"):
    app.add_middleware(HTTPSRedirectMiddleware)


# Domain errors: stable error code + the status each error class declares
@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return error_response(exc)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {str(exc)}", exc_info=True)
    logger.error(f"Traceback: {traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "detail": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


# HTTPException handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
        },
        headers=exc.headers,
    )


# Health check endpoint
@app.get("/")
def root():
    return {
        "success": True,
        "message": f"{settings.APP_NAME} is running",
        "version": settings.APP_VERSION
    }


@app.get("/health")
def health_check():
    return {
        "success": True,
        "message": "Service is healthy",
        "status": "ok"
    }


@app.get("/health/db")
def health_check_db():
    """Check database connectivity"""
    from database import check_db_connection
    if check_db_connection():
        return {
            "success": True,
            "message": "Database connection successful",
            "status": "ok"
        }
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "message": "Database connection failed",
            "status": "error"
        }
    )


# Include routers with /api prefix; bulk first so /orders/bulk/* never matches /orders/{order_id}
app.include_router(bulk_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
app.include_router(drivers_router, prefix="/api")
app.include_router(wallet_router, prefix="/api")


# Startup event
@app.on_event("startup")
def startup_event():
    logger.info(f"🚀 {settings.APP_NAME} v{settings.APP_VERSION} is starting...")
    logger.info(f"📚 Documentation available at: /docs")
    if settings.DATABASE_URL:
        logger.info(f"🔗 Database: {settings.DATABASE_URL.split('://')[0]}")
    else:
        logger.info(f"🔗 Database: {settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}")

    if settings.REDIS_ENABLED:
        logger.info("🔒 Settlement locks: Redis + row locks")
    else:
        logger.info("ℹ️ Settlement locks: row locks only (no REDIS_URL configured)")

    # Initialize database tables
    try:
        from database import init_db
        logger.info("📊 Initializing database tables...")
        init_db()
        logger.info("✅ Database tables initialized successfully")
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {str(e)}", exc_info=True)

    logger.info("✅ API ready to receive requests")


# Shutdown event
@app.on_event("shutdown")
def shutdown_event():
    logger.info(f"👋 Shutting down {settings.APP_NAME}...")


# Run the application
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
        log_level="info"
    )
