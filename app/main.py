# app/main.py
import asyncio
import contextlib
import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.api.endpoints import service, yield_data
from app.services.collaborators import DataCollaborator, create_collaborator
from app.x402.middleware import X402Middleware
from app.x402.pricing import EndpointPriceTable, load_price_table
from app.x402.ratelimit import RateLimiter
from app.x402.responses import get_pay_to_address

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def log_startup_banner(price_table: EndpointPriceTable) -> None:
    logger.info(f"{settings.PROJECT_NAME}: {settings.SERVICE_NAME} v{settings.SERVICE_VERSION}")
    logger.info(f"Network: {settings.X402_NETWORK} (chain {settings.X402_CHAIN_ID})")
    logger.info(f"Token: {settings.X402_PAYMENT_TOKEN_SYMBOL} ({settings.X402_PAYMENT_TOKEN})")
    if settings.X402_PAY_TO_ADDRESS:
        logger.info(f"PayTo: {get_pay_to_address()}")
    else:
        logger.warning("X402_PAY_TO_ADDRESS not configured - recipient check disabled")
    logger.info(f"Endpoints: {len(price_table)} priced")


def create_app(
    collaborator: Optional[DataCollaborator] = None,
    price_table: Optional[EndpointPriceTable] = None,
    rate_limiter: Optional[RateLimiter] = None
) -> FastAPI:
    """
    Build the gateway application.

    Components not passed in are built from configuration.
    """
    price_table = price_table if price_table is not None else load_price_table()
    rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        log_startup_banner(price_table)
        sweeper = asyncio.create_task(rate_limiter.run_periodic_sweep())
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.SERVICE_VERSION, lifespan=lifespan)
    app.state.collaborator = collaborator if collaborator is not None else create_collaborator()
    app.state.price_table = price_table
    app.state.rate_limiter = rate_limiter

    app.include_router(service.router, tags=["default"])
    app.include_router(yield_data.router, prefix="/yield", tags=["yield"])

    @app.exception_handler(404)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"status": 404, "error": "Not Found", "service": settings.SERVICE_NAME}
        )

    # Middleware added last runs first: CORS, request log, then the x402 gate
    app.add_middleware(X402Middleware, price_table=price_table, rate_limiter=rate_limiter)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)")
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Payment", "Authorization"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
