# app/x402/validation.py
"""
Payment header validation for the x402 gateway.

The Payment header carries a JSON payment assertion, either as raw JSON
text or as base64-encoded JSON:

    {"from": "0x...", "to": "0x...", "amount": "1000",
     "token": "0x...", "chainId": 5042002, "signature": "0x..."}

Validation is structural only: required fields, chain, token, amount and
recipient are checked against configuration. The signature is required to
be present but is NOT verified against the payer, and nothing is checked
on-chain. Only deploy this where no funds are at risk.

Configuration is loaded from app/core/config.py:
- X402_CHAIN_ID: Expected chain id
- X402_PAYMENT_TOKEN: Expected token contract address
- X402_PAY_TO_ADDRESS: Expected recipient (check skipped when unset)
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.config import settings, ZERO_ADDRESS

logger = logging.getLogger(__name__)

PAYMENT_HEADER = "Payment"

REQUIRED_FIELDS = ("from", "to", "amount", "token", "chainId", "signature")


@dataclass(frozen=True)
class PaymentValidationResult:
    """Outcome of validating a Payment header."""
    valid: bool
    error: Optional[str] = None
    payment: Optional[Dict[str, Any]] = None

    @classmethod
    def invalid(cls, error: str) -> "PaymentValidationResult":
        return cls(valid=False, error=error)


def _b64_json(raw: str) -> Any:
    raw += "=" * (-len(raw) % 4)
    try:
        data = base64.b64decode(raw, validate=True)
    except binascii.Error:
        # base64url alphabet ("-" and "_")
        data = base64.urlsafe_b64decode(raw)
    return json.loads(data.decode("utf-8"))


def decode_payment_header(header_value: str) -> Any:
    """
    Decode a Payment header into a payment assertion.

    Tries a direct JSON parse first, then base64 (standard or URL-safe
    alphabet) followed by JSON. Any JSON value other than null is returned
    as is; a value that is not an object simply has none of the required
    fields.

    Args:
        header_value: Raw Payment header value

    Returns:
        The decoded assertion

    Raises:
        ValueError: If the value is neither JSON nor base64-encoded JSON,
            or decodes to null
    """
    try:
        decoded = json.loads(header_value)
    except json.JSONDecodeError:
        try:
            decoded = _b64_json(header_value.strip())
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"not JSON or base64-encoded JSON ({e})") from e

    if decoded is None:
        raise ValueError("payment assertion is null")

    return decoded


def parse_amount(value: Any) -> int:
    """
    Parse a payment amount as an arbitrary-precision unsigned integer.

    Accepts JSON integers, decimal digit strings and "0x" hex strings.

    Raises:
        ValueError: If the value is not an unsigned integer
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid amount {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"invalid amount {value}")
        return value
    if isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "0x" and len(text) > 2:
            try:
                return int(text[2:], 16)
            except ValueError:
                pass
        elif text.isdigit() and text.isascii():
            return int(text)
    raise ValueError(f"invalid amount {value!r}")


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _normalize_chain_id(value: Any) -> str:
    # 5042002.0 and 5042002 name the same chain
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def validate_payment(
    payment_header: str,
    expected_amount: int,
    *,
    chain_id: Optional[int] = None,
    payment_token: Optional[str] = None,
    pay_to: Optional[str] = None,
) -> PaymentValidationResult:
    """
    Validate a Payment header against a route's price.

    Checks run in order and stop at the first failure:
    1. Decode (JSON, then base64 JSON)
    2. All required fields present and non-empty
    3. chainId matches the configured chain
    4. token matches the configured payment token (case-insensitive)
    5. amount >= expected_amount
    6. to matches the configured pay-to address, if one is set

    Args:
        payment_header: Raw Payment header value
        expected_amount: Route price in token base units
        chain_id: Expected chain id. Uses config if not provided.
        payment_token: Expected token address. Uses config if not provided.
        pay_to: Expected recipient. Uses config if not provided.

    Returns:
        PaymentValidationResult; on success `payment` is the decoded
        assertion, unchanged
    """
    expected_chain = chain_id if chain_id is not None else settings.X402_CHAIN_ID
    expected_token = payment_token if payment_token is not None else settings.X402_PAYMENT_TOKEN
    expected_pay_to = pay_to if pay_to is not None else settings.X402_PAY_TO_ADDRESS

    try:
        payment = decode_payment_header(payment_header)
    except ValueError as e:
        return PaymentValidationResult.invalid(f"Malformed Payment header: {e}")

    if not isinstance(payment, dict):
        # Scalars and arrays carry no fields
        payment = {}

    for field_name in REQUIRED_FIELDS:
        if _is_missing(payment.get(field_name)):
            return PaymentValidationResult.invalid(f"Missing required field: {field_name}")

    if _normalize_chain_id(payment["chainId"]) != _normalize_chain_id(expected_chain):
        return PaymentValidationResult.invalid(f"Invalid chainId: expected {expected_chain}")

    if str(payment["token"]).lower() != expected_token.lower():
        return PaymentValidationResult.invalid(f"Invalid token: expected {expected_token}")

    try:
        amount = parse_amount(payment["amount"])
    except ValueError as e:
        return PaymentValidationResult.invalid(f"Malformed Payment header: {e}")

    if amount < expected_amount:
        return PaymentValidationResult.invalid(
            f"Insufficient payment: expected at least {expected_amount}, got {payment['amount']}"
        )

    # Open mode: no recipient configured, any `to` is accepted
    if expected_pay_to and expected_pay_to.lower() != ZERO_ADDRESS:
        if str(payment["to"]).lower() != expected_pay_to.lower():
            return PaymentValidationResult.invalid(f"Invalid recipient: expected {expected_pay_to}")

    return PaymentValidationResult(valid=True, payment=payment)
