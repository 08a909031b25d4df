from typing import List

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """
    Response model for the health check endpoint.
    """
    status: str
    service: str
    version: str


class EndpointInfo(BaseModel):
    """
    A priced endpoint as advertised in the service listing.
    """
    path: str
    price: str
    priceFormatted: str
    description: str


class ServiceInfoResponse(BaseModel):
    """
    Response model for the service info endpoint.
    """
    service: str
    version: str
    protocol: str
    network: str
    chainId: int
    paymentToken: str
    paymentTokenSymbol: str
    endpoints: List[EndpointInfo]
