# tests/helpers.py
"""Shared payment fixtures for the gateway tests."""
import json
from base64 import b64encode

PAY_TO = "0x1111111111111111111111111111111111111111"
PAYER = "0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
TOKEN = "0x3600000000000000000000000000000000000000"
CHAIN_ID = 5042002


def make_payment(**overrides) -> dict:
    """Build a well-formed payment assertion."""
    payment = {
        "from": PAYER,
        "to": PAY_TO,
        "amount": "1000",
        "token": TOKEN,
        "chainId": CHAIN_ID,
        "signature": "0xdead",
    }
    payment.update(overrides)
    return payment


def encode_payment(payment: dict, as_base64: bool = False) -> str:
    """Serialize a payment assertion as a Payment header value."""
    text = json.dumps(payment)
    if as_base64:
        return b64encode(text.encode("utf-8")).decode("ascii")
    return text
