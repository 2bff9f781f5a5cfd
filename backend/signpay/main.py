"""
SignPay Backend - FastAPI Application

Signed merchant order API: merchants submit, fetch, complete and remove
payment orders with requests signed by their registered key pair.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from .config import settings
from .exceptions import OrderAPIError
from .db.init_db import initialize_database
from .api.orders import envelope, router as orders_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup creates the database tables; nothing needs cleanup on shutdown.
    """
    logger.info("Starting SignPay backend server...")
    logger.info(f"Signature window: {settings.signature_max_age_seconds}s")

    try:
        await initialize_database()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    logger.info("Server startup complete")

    yield

    logger.info("Shutting down SignPay backend server...")


app = FastAPI(
    title="SignPay API",
    description="Signed merchant order API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(OrderAPIError)
async def order_error_handler(request: Request, exc: OrderAPIError):
    """
    Render order errors as the standard envelope.

    The HTTP status matches the envelope's `status` field.
    """
    logger.warning(
        f"Order API error {exc.status}: {exc.message}",
        extra={"details": exc.details}
    )

    return JSONResponse(
        status_code=exc.status,
        content=exc.to_envelope()
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """
    Handle malformed path/query parameters caught by FastAPI.
    """
    logger.warning(f"Validation error: {exc.errors()}")

    return JSONResponse(
        status_code=400,
        content=envelope(None, "Invalid request parameters", 400)
    )


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unexpected errors.

    Logs full exception for debugging but returns generic message to client.
    """
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

    message = "An unexpected error occurred"
    if settings.debug:
        message = f"{message} ({type(exc).__name__})"

    return JSONResponse(
        status_code=500,
        content=envelope(None, message, 500)
    )


@app.get("/api/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.
    """
    return {
        "status": "healthy",
        "version": "0.1.0",
    }


app.include_router(orders_router, prefix="/api/orders", tags=["Orders"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "signpay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
