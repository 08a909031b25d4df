# app/api/endpoints/service.py
from fastapi import APIRouter, Request
import logging

from app.core.config import settings
from app.x402.pricing import format_price
from app.api.models.service import HealthResponse, ServiceInfoResponse, EndpointInfo

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Health Check")
async def health() -> HealthResponse:
    """ Basic health check endpoint. Always free. """
    return HealthResponse(
        status="ok",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION
    )


@router.get("/", response_model=ServiceInfoResponse, summary="Service Info")
async def service_info(request: Request) -> ServiceInfoResponse:
    """
    Describe the gateway and list its priced endpoints.

    Returns:
        ServiceInfoResponse: Network, payment token and per-endpoint prices
    """
    logger.info("Root endpoint '/' accessed.")
    endpoints = [
        EndpointInfo(
            path=entry.pattern,
            price=str(entry.price),
            priceFormatted=format_price(entry.price),
            description=entry.description
        )
        for entry in request.app.state.price_table
    ]
    return ServiceInfoResponse(
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        protocol="x402",
        network=settings.X402_NETWORK,
        chainId=settings.X402_CHAIN_ID,
        paymentToken=settings.X402_PAYMENT_TOKEN,
        paymentTokenSymbol=settings.X402_PAYMENT_TOKEN_SYMBOL,
        endpoints=endpoints
    )
