"""Tests for the uvicorn entry point."""
from __future__ import annotations

from unittest.mock import patch

from src.api import main


def test_run_serves_configured_host_and_port(billing_settings):
    with patch.object(billing_settings, "API_HOST", "127.0.0.1"), \
         patch.object(billing_settings, "API_PORT", 9123), \
         patch("uvicorn.run") as serve:
        main.run()
    serve.assert_called_once_with("src.api.main:app", host="127.0.0.1", port=9123, log_config=None)
