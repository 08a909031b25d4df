"""
x402 Payment Protocol Gateway Module.

This module implements the x402 "402 Payment Required" pattern for the
YieldClaw data gateway, enabling pay-per-request access to vault data.

Key components:
- middleware: FastAPI middleware running the payment gate per request
- pricing: Endpoint price table and route matching
- validation: Payment header decoding and structural validation
- ratelimit: Per-client fixed-window rate limiting
- responses: 402 / 429 / 500 bodies and collaborator output shaping

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "1.0.0"
