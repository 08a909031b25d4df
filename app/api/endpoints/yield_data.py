# app/api/endpoints/yield_data.py
from fastapi import APIRouter, Depends, HTTPException, Request, status
from typing import Any, List
import logging
import re

from app.core.config import settings
from app.services.collaborators import CollaboratorError, DataCollaborator, query_collaborator
from app.x402.responses import parse_collaborator_output

logger = logging.getLogger(__name__)

router = APIRouter()

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def get_collaborator(request: Request) -> DataCollaborator:
    """Dependency returning the app's data collaborator."""
    return request.app.state.collaborator


async def serve_query(
    request: Request,
    collaborator: DataCollaborator,
    query: str,
    args: List[str],
    failure_message: str
) -> Any:
    """
    Run a collaborator query and shape its output as the response body.

    Raises:
        HTTPException: 500 if the collaborator fails or times out
    """
    payment = getattr(request.state, "x402_payment", None)
    if payment:
        logger.info(f"Serving {query} for payer {payment.get('from')}")

    try:
        raw = await query_collaborator(collaborator, query, args)
    except CollaboratorError as e:
        logger.error(f"Collaborator query {query} {' '.join(args)} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{failure_message}: {e}" if settings.DEBUG else failure_message
        )

    return parse_collaborator_output(raw)


@router.get("/apy", summary="Current Vault APY")
async def get_apy(request: Request, collaborator: DataCollaborator = Depends(get_collaborator)) -> Any:
    return await serve_query(request, collaborator, "get-apy", [], "Failed to retrieve APY data")


@router.get("/tvl", summary="Total Value Locked")
async def get_tvl(request: Request, collaborator: DataCollaborator = Depends(get_collaborator)) -> Any:
    return await serve_query(request, collaborator, "get-tvl", [], "Failed to retrieve TVL data")


@router.get("/balance/{address}", summary="Vault Balance for an Address")
async def get_balance(
    address: str,
    request: Request,
    collaborator: DataCollaborator = Depends(get_collaborator)
) -> Any:
    """
    Vault share balance, asset value and max withdrawal for an address.

    Raises:
        HTTPException: 400 if the address is not 0x followed by 40 hex characters
    """
    if not ADDRESS_PATTERN.match(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid address format: expected 0x followed by 40 hexadecimal characters"
        )
    return await serve_query(request, collaborator, "get-balance", [address], "Failed to retrieve balance")


@router.get("/stats", summary="Protocol Statistics")
async def get_stats(request: Request, collaborator: DataCollaborator = Depends(get_collaborator)) -> Any:
    return await serve_query(request, collaborator, "get-stats", [], "Failed to retrieve stats")


@router.get("/report", summary="Yield Report")
async def get_report(request: Request, collaborator: DataCollaborator = Depends(get_collaborator)) -> Any:
    return await serve_query(request, collaborator, "yield-report", [], "Failed to generate yield report")


@router.get("/stream/{stream_id}", summary="Payment Stream Details")
async def get_stream(
    stream_id: str,
    request: Request,
    collaborator: DataCollaborator = Depends(get_collaborator)
) -> Any:
    """
    Details of a payment stream by id.

    Raises:
        HTTPException: 400 if the id is not a positive integer
    """
    if not (stream_id.isascii() and stream_id.isdigit() and int(stream_id) > 0):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid stream ID: expected a positive integer"
        )
    return await serve_query(request, collaborator, "get-stream", [stream_id], "Failed to retrieve stream info")
