"""
ordermatch HTTP service.

Wires the record store, matching engine and order service into a FastAPI app
and maps the error taxonomy onto HTTP responses.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.models import ErrorResponse, HealthResponse
from .api.routes import orders
from .config import get_settings
from .core.matching_engine import MatchingEngine
from .services.order_service import OrderService
from .stores import create_store
from .utils.exceptions import (
    InvalidStateError,
    LockTimeoutError,
    NotFoundError,
    OrderMatchException,
    StoreUnavailableError,
    ValidationError,
)
from .utils.logger import get_logger

API_VERSION = "1.0.0"

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

matching_engine: MatchingEngine = None
order_service: OrderService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Builds the record store, matching engine and order service on startup and
    releases the store on shutdown.
    """
    global matching_engine, order_service

    logger.info("Starting ordermatch API (%s store)", settings.store_backend)

    get_logger(
        log_level=settings.log_level,
        log_dir=Path(settings.log_dir) if settings.log_dir else None,
        use_json=settings.use_json_logs,
    )

    store = create_store(settings)

    matching_engine = MatchingEngine(
        store,
        lock_timeout=settings.book_lock_timeout_seconds,
        log_level=settings.log_level,
    )
    order_service = OrderService(matching_engine)
    orders.set_order_service(order_service)

    logger.info("Order service ready on %s:%s", settings.backend_host, settings.backend_port)

    yield

    orders.set_order_service(None)
    store.close()
    logger.info("Record store closed")


app = FastAPI(
    title="Order Matching API",
    description="""
    Limit order matching with price-time priority.

    ## Endpoints
    * **POST /api/v1/orders**: Create an order and match it
    * **DELETE /api/v1/orders/{order_id}**: Cancel an order
    * **GET /api/v1/orders**: List orders with filters, sorting and pagination
    * **GET /api/v1/orders/{order_id}**: Get an order
    * **GET /api/v1/orders/{order_id}/history**: Status history of an order
    * **GET /api/v1/orders/{order_id}/trades**: Trades of an order
    """,
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path and status of every request."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        f"Request [{request_id}]: {request.method} {request.url.path} "
        f"from {request.client.host if request.client else 'unknown'}"
    )

    response = await call_next(request)

    logger.info(f"Response [{request_id}]: {response.status_code}")

    return response


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Tag the request with X-Request-ID, reusing the caller's value when sent."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


def _error_response(request: Request, status_code: int, exc: OrderMatchException) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            message=exc.message,
            detail=exc.details or None,
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode='json')
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and query parameters."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(f"Validation error [{request_id}]: {exc.errors()}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="ValidationError",
            message="Request validation failed",
            detail={"errors": [str(error) for error in exc.errors()]},
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode='json')
    )


@app.exception_handler(ValidationError)
async def order_validation_exception_handler(request: Request, exc: ValidationError):
    """Handle order validation errors."""
    logger.warning(f"Invalid order [{getattr(request.state, 'request_id', 'unknown')}]: {exc.message}")
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    """Handle missing records."""
    logger.warning(f"Not found [{getattr(request.state, 'request_id', 'unknown')}]: {exc.message}")
    return _error_response(request, status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(InvalidStateError)
async def invalid_state_exception_handler(request: Request, exc: InvalidStateError):
    """Handle operations on orders in an incompatible status."""
    logger.warning(f"Invalid state [{getattr(request.state, 'request_id', 'unknown')}]: {exc.message}")
    return _error_response(request, status.HTTP_409_CONFLICT, exc)


@app.exception_handler(StoreUnavailableError)
@app.exception_handler(LockTimeoutError)
async def unavailable_exception_handler(request: Request, exc: OrderMatchException):
    """Handle store failures and order book lock timeouts."""
    logger.error(f"Unavailable [{getattr(request.state, 'request_id', 'unknown')}]: {exc.message}")
    return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything not in the error taxonomy is a 500."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unhandled exception [{request_id}]: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="InternalServerError",
            message="An internal error occurred",
            detail={"request_id": request_id},
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode='json')
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Check API and matching engine health status"
)
async def health_check() -> HealthResponse:
    """Returns service status and matching engine statistics."""
    stats = matching_engine.get_statistics() if matching_engine else {}

    return HealthResponse(
        status="healthy" if matching_engine else "starting",
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
        store_backend=settings.store_backend,
        matching_engine=stats
    )


app.include_router(orders.router)


@app.get("/", tags=["root"])
async def root():
    """Service name and links."""
    return {
        "name": "Order Matching API",
        "version": API_VERSION,
        "status": "operational",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ordermatch.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        log_level=settings.log_level.lower()
    )
