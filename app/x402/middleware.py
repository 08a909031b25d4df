# app/x402/middleware.py
"""
FastAPI middleware for x402 payment gating.

This module provides HTTP middleware that, for every request:
1. Applies the per-client rate limit (429 when exceeded)
2. Looks the path up in the endpoint price table (unpriced routes pass through)
3. Returns 402 Payment Required when a priced route has no Payment header
4. Validates the Payment header (402 with an error reason when invalid)
5. Forwards paid requests, recording the payment on request.state

CORS preflight requests pass straight through. Nothing is settled and no
funds move: payment validation is structural only (see app.x402.validation).
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.x402.pricing import EndpointPriceTable, PricedEndpoint, load_price_table
from app.x402.ratelimit import RateLimiter, RateLimitResult, get_rate_limit_headers
from app.x402.responses import create_402_response, create_429_response, create_500_response
from app.x402.validation import PAYMENT_HEADER, validate_payment

logger = logging.getLogger(__name__)

# Always free, whatever the price table says
FREE_PATHS = frozenset({"/", "/health"})


@dataclass(frozen=True)
class PassThrough:
    """Route is not priced (or is a preflight); hand it to the next handler."""
    rate_limit: Optional[RateLimitResult] = None


@dataclass(frozen=True)
class RateLimited:
    """Client exceeded its request quota."""
    rate_limit: RateLimitResult


@dataclass(frozen=True)
class PaymentRequired:
    """Priced route without an acceptable payment."""
    endpoint: PricedEndpoint
    rate_limit: RateLimitResult
    error: Optional[str] = None


@dataclass(frozen=True)
class Forwarded:
    """Priced route with a valid payment assertion."""
    endpoint: PricedEndpoint
    payment: Dict[str, Any]
    rate_limit: RateLimitResult


GatewayDecision = Union[PassThrough, RateLimited, PaymentRequired, Forwarded]


def get_client_ip(request: Request, trust_proxy_headers: Optional[bool] = None) -> str:
    """
    Extract client IP from request.

    Proxy headers are client-controlled, so they are only honoured when
    X402_TRUST_PROXY_HEADERS is set (or trust_proxy_headers=True).
    """
    trust = trust_proxy_headers if trust_proxy_headers is not None else settings.X402_TRUST_PROXY_HEADERS

    if trust:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # Take the first IP in the chain
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    The price table and rate limiter are owned by the middleware instance;
    pass them in to share them with the rest of the app or to isolate tests.
    """

    def __init__(
        self,
        app,
        price_table: Optional[EndpointPriceTable] = None,
        rate_limiter: Optional[RateLimiter] = None
    ):
        super().__init__(app)
        self.price_table = price_table if price_table is not None else load_price_table()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()

    def decide(self, request: Request) -> GatewayDecision:
        """
        Run the gateway state machine for one request.

        Order is fixed: preflight check, rate limit, route match, payment.
        """
        if request.method == "OPTIONS":
            return PassThrough()

        client_ip = get_client_ip(request)
        rate_limit = self.rate_limiter.admit(client_ip)
        if not rate_limit.allowed:
            return RateLimited(rate_limit=rate_limit)

        path = request.url.path
        endpoint = None if path in FREE_PATHS else self.price_table.lookup(path)
        if endpoint is None:
            return PassThrough(rate_limit=rate_limit)

        payment_header = request.headers.get(PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No Payment header for {path}, returning 402 for {endpoint.price}")
            return PaymentRequired(endpoint=endpoint, rate_limit=rate_limit)

        result = validate_payment(payment_header, endpoint.price)
        if not result.valid:
            logger.warning(f"x402: Invalid payment from {client_ip} for {path}: {result.error}")
            return PaymentRequired(endpoint=endpoint, rate_limit=rate_limit, error=result.error)

        logger.info(
            f"x402: Payment accepted from {result.payment.get('from')} "
            f"for {endpoint.pattern} ({result.payment.get('amount')})"
        )
        return Forwarded(endpoint=endpoint, payment=result.payment, rate_limit=rate_limit)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        """Render the gateway decision, forwarding admitted requests."""
        decision = self.decide(request)

        if isinstance(decision, RateLimited):
            return create_429_response(decision.rate_limit)

        headers = get_rate_limit_headers(decision.rate_limit) if decision.rate_limit else {}

        if isinstance(decision, PaymentRequired):
            return create_402_response(decision.endpoint, decision.error, headers=headers)

        if isinstance(decision, Forwarded):
            request.state.x402_paid = True
            request.state.x402_payment = decision.payment
            request.state.x402_endpoint = decision.endpoint.pattern

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(f"x402: Unhandled error serving {request.method} {request.url.path}: {e}")
            response = create_500_response(detail=str(e))

        response.headers.update(headers)
        return response
