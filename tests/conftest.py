# tests/conftest.py
from unittest.mock import patch

import pytest

from app.core.config import settings
from tests.helpers import CHAIN_ID, PAY_TO, TOKEN


@pytest.fixture
def gateway_settings():
    """Pin the payment configuration for a test."""
    with patch.object(settings, "X402_NETWORK", "arc-testnet"), \
            patch.object(settings, "X402_CHAIN_ID", CHAIN_ID), \
            patch.object(settings, "X402_PAYMENT_TOKEN", TOKEN), \
            patch.object(settings, "X402_PAY_TO_ADDRESS", PAY_TO), \
            patch.object(settings, "DEBUG", False), \
            patch.object(settings, "X402_TRUST_PROXY_HEADERS", False), \
            patch.object(settings, "COLLABORATOR_TIMEOUT_SECONDS", settings.COLLABORATOR_TIMEOUT_SECONDS):
        yield settings
