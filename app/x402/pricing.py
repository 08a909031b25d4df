# app/x402/pricing.py
"""
Endpoint price table for x402 payment responses.

Maps route patterns to a price (in the payment token's base units) and a
human-readable description. A route is "priced" when the table returns an
entry for it; unpriced routes pass through the gateway untouched.

Patterns are either exact paths ("/yield/apy") or contain a single variable
segment written as ":name" or "{name}" ("/yield/balance/:address"). Exact
matches are tried first; parameterized patterns are then tried in table
order and the first structural match wins.

Configuration is loaded from app/core/config.py:
- X402_ENDPOINTS_FILE: Optional JSON file overriding the built-in table
- X402_PAYMENT_TOKEN_DECIMALS / X402_PAYMENT_TOKEN_SYMBOL: Price formatting
"""
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Pattern, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)

# Built-in price table, prices in token base units (USDC has 6 decimals)
DEFAULT_ENDPOINTS: Dict[str, Dict[str, object]] = {
    "/yield/apy": {"price": 1000, "description": "Current vault APY"},
    "/yield/tvl": {"price": 1000, "description": "Total value locked in the vault"},
    "/yield/balance/:address": {"price": 2000, "description": "Vault share balance for an address"},
    "/yield/stats": {"price": 5000, "description": "Full protocol statistics"},
    "/yield/report": {"price": 10000, "description": "Complete yield report"},
    "/yield/stream/:id": {"price": 2000, "description": "Payment stream details"},
}


@dataclass(frozen=True)
class PricedEndpoint:
    """A priced route: pattern, price in base units, description."""
    pattern: str
    price: int
    description: str


def is_variable_segment(segment: str) -> bool:
    """Check if a path segment is a parameter placeholder (":id" or "{id}")."""
    if segment.startswith(":") and len(segment) > 1:
        return True
    return segment.startswith("{") and segment.endswith("}") and len(segment) > 2


def compile_pattern(pattern: str) -> Optional[Pattern[str]]:
    """
    Compile a parameterized pattern into a regex.

    The variable segment matches exactly one non-empty, non-slash segment;
    every other segment must match literally.

    Args:
        pattern: Route pattern, e.g. "/yield/balance/:address"

    Returns:
        Compiled regex, or None if the pattern has no variable segment

    Raises:
        ValueError: If the pattern has more than one variable segment
    """
    segments = pattern.split("/")
    variables = [seg for seg in segments if is_variable_segment(seg)]

    if not variables:
        return None
    if len(variables) > 1:
        raise ValueError(f"Only one variable segment per pattern is supported: {pattern}")

    regex = "/".join(
        "[^/]+" if is_variable_segment(seg) else re.escape(seg)
        for seg in segments
    )
    return re.compile(f"^{regex}$")


class EndpointPriceTable:
    """
    Immutable lookup table from request path to PricedEndpoint.

    Built once at startup; lookups never mutate it.
    """

    def __init__(self, endpoints: Dict[str, Dict[str, object]]):
        self._exact: Dict[str, PricedEndpoint] = {}
        self._parameterized: List[Tuple[Pattern[str], PricedEndpoint]] = []

        for pattern, info in endpoints.items():
            entry = PricedEndpoint(
                pattern=pattern,
                price=int(info["price"]),
                description=str(info.get("description", "")),
            )
            if entry.price < 0:
                raise ValueError(f"Negative price for endpoint {pattern}: {entry.price}")

            self._exact[pattern] = entry
            matcher = compile_pattern(pattern)
            if matcher is not None:
                self._parameterized.append((matcher, entry))

    def lookup(self, path: str) -> Optional[PricedEndpoint]:
        """
        Find the priced endpoint for a request path.

        Args:
            path: Request path; any query string is ignored

        Returns:
            The matched PricedEndpoint, or None if the route is not priced
        """
        path = path.split("?", 1)[0]

        exact = self._exact.get(path)
        if exact is not None:
            return exact

        for matcher, entry in self._parameterized:
            if matcher.match(path):
                return entry

        return None

    def __iter__(self) -> Iterator[PricedEndpoint]:
        return iter(self._exact.values())

    def __len__(self) -> int:
        return len(self._exact)


def load_endpoints_file(path: str) -> Dict[str, Dict[str, object]]:
    """
    Read the endpoint table from a JSON config file.

    Accepts either {"endpoints": {...}} or the bare endpoint mapping.

    Raises:
        ValueError: If the file does not contain an endpoint mapping
    """
    data = json.loads(Path(path).read_text())
    endpoints = data.get("endpoints", data) if isinstance(data, dict) else None
    if not isinstance(endpoints, dict):
        raise ValueError(f"No endpoint mapping found in {path}")
    return endpoints


def load_price_table(endpoints_file: Optional[str] = None) -> EndpointPriceTable:
    """
    Build the price table from the configured file or the built-in defaults.

    Args:
        endpoints_file: JSON file path. Uses config if not provided.

    Returns:
        EndpointPriceTable ready for lookups
    """
    path = endpoints_file if endpoints_file is not None else settings.X402_ENDPOINTS_FILE

    if path:
        logger.info(f"Loading endpoint price table from {path}")
        return EndpointPriceTable(load_endpoints_file(path))

    return EndpointPriceTable(DEFAULT_ENDPOINTS)


def format_price(
    amount: int,
    decimals: Optional[int] = None,
    symbol: Optional[str] = None
) -> str:
    """
    Render a base-unit amount as a token string, e.g. 1000 -> "0.001000 USDC".

    Args:
        amount: Amount in token base units
        decimals: Token decimals. Uses config if not provided.
        symbol: Token symbol. Uses config if not provided.
    """
    token_decimals = decimals if decimals is not None else settings.X402_PAYMENT_TOKEN_DECIMALS
    token_symbol = symbol if symbol is not None else settings.X402_PAYMENT_TOKEN_SYMBOL

    value = Decimal(amount).scaleb(-token_decimals)
    return f"{value:.{token_decimals}f} {token_symbol}"
