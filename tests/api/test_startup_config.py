"""Tests for startup validation of the webhook configuration."""

from unittest.mock import patch

import pytest

from commerce_api.core.config import Settings
from commerce_api.main import validate_webhook_config

pytestmark = pytest.mark.unit


def test_missing_secret_fails_outside_debug():
    with patch("commerce_api.main.get_settings", return_value=Settings(debug=False, stripe_webhook_secret="")):
        with pytest.raises(RuntimeError, match="STRIPE_WEBHOOK_SECRET"):
            validate_webhook_config()


def test_missing_secret_allowed_in_debug():
    with patch("commerce_api.main.get_settings", return_value=Settings(debug=True, stripe_webhook_secret="")):
        validate_webhook_config()


def test_configured_secret_passes():
    with patch("commerce_api.main.get_settings", return_value=Settings(debug=False, stripe_webhook_secret="whsec_x")):
        validate_webhook_config()


def test_unknown_signature_mode_fails_even_in_debug():
    settings = Settings(debug=True, webhook_signature_mode="md5")

    with patch("commerce_api.main.get_settings", return_value=settings):
        with pytest.raises(ValueError, match="Unsupported webhook signature mode"):
            validate_webhook_config()
