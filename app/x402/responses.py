# app/x402/responses.py
"""
Response construction for the x402 gateway.

Builds the canonical 402 Payment Required body, the 429 and 500 error
bodies, and the success envelope for collaborator output.
"""
import json
import logging
from typing import Any, Dict, Optional

from starlette.responses import JSONResponse

from app.core.config import settings, ZERO_ADDRESS
from app.x402.pricing import PricedEndpoint
from app.x402.ratelimit import RateLimitResult, get_rate_limit_headers

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = "1.0"


def get_pay_to_address() -> str:
    """Configured pay-to address, or the zero address when unset."""
    return settings.X402_PAY_TO_ADDRESS or ZERO_ADDRESS


def build_402_body(endpoint: PricedEndpoint, error: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the 402 Payment Required response body.

    Args:
        endpoint: The matched priced endpoint
        error: Validation failure reason; omitted when no Payment header was sent

    Returns:
        JSON-serialisable response body
    """
    body: Dict[str, Any] = {
        "status": 402,
        "message": "Payment Required",
        "x402": {
            "version": X402_VERSION,
            "network": settings.X402_NETWORK,
            "chainId": settings.X402_CHAIN_ID,
            "payTo": get_pay_to_address(),
            "token": settings.X402_PAYMENT_TOKEN,
            "amount": str(endpoint.price),
            "description": endpoint.description,
        },
    }
    if error is not None:
        body["error"] = error
    return body


def create_402_response(
    endpoint: PricedEndpoint,
    error: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    """Create an HTTP 402 Payment Required response."""
    return JSONResponse(
        status_code=402,
        content=build_402_body(endpoint, error),
        headers=headers
    )


def create_429_response(result: RateLimitResult) -> JSONResponse:
    """Create an HTTP 429 Too Many Requests response with retry hints."""
    return JSONResponse(
        status_code=429,
        content={
            "status": 429,
            "message": "Too Many Requests",
            "retryAfterMs": result.retry_after_ms,
        },
        headers=get_rate_limit_headers(result)
    )


def create_500_response(
    message: str = "Internal Server Error",
    detail: Optional[str] = None
) -> JSONResponse:
    """
    Create an HTTP 500 response.

    The detail is only included in debug mode; callers should log it.
    """
    content: Dict[str, Any] = {"status": 500, "error": message}
    if detail is not None and settings.DEBUG:
        content["detail"] = detail
    return JSONResponse(status_code=500, content=content)


def parse_collaborator_output(raw: str) -> Any:
    """
    Parse collaborator output as JSON, wrapping non-JSON text.

    Args:
        raw: Raw collaborator output

    Returns:
        Parsed JSON, or {"result": raw} if it is not valid JSON
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"result": raw}
