"""Shared test fixtures for pkcelogin.

Provides reusable client configurations, an isolated working directory for
config resolution, a scrubbed environment, and output-state management.
These fixtures are automatically discovered by pytest and available to all
test modules without explicit imports.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pkcelogin.models import ClientConfig
from pkcelogin.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every Azure app registration variable from the environment."""
    for name in (
        "AZURE_APP_CLIENT_ID",
        "AZURE_APP_CLIENT_SECRET",
        "AZURE_APP_TENANT_ID",
        "AZURE_OPENID_CONFIG_TOKEN_ENDPOINT",
        "AZURE_APP_REDIRECT_URI",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, clean_env: None) -> Path:
    """Run the test from an empty directory so no stray pkcelogin.json is read."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def client_config() -> ClientConfig:
    """A confidential client pointing at an unroutable test provider."""
    return ClientConfig(
        client_id="test-client",
        client_secret="test-secret",
        authority="https://login.example.com/tenant/oauth2/v2.0",
        scopes=["openid", "offline_access"],
        redirect_port=0,
        callback_timeout=5.0,
    )

