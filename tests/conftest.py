"""
Shared fixtures: every test gets a clean environment and its own database.
"""
import pytest

from core.config import reset_settings
from core.db import get_store, reset_store
from llm.client import reset_clients

PROVIDER_KEYS = (
    "GEMINI_API_KEY",
    "ZHIPUAI_API_KEY",
    "MASSIVE_API_KEY",
    "SERPAPI_API_KEY",
    "EXTRACTION_WEBHOOK_URL",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Clear provider credentials and point storage at a temp directory."""
    for key in PROVIDER_KEYS:
        for prefix in ("", "VITE_", "NEXT_PUBLIC_"):
            monkeypatch.delenv(f"{prefix}{key}", raising=False)
    for key in ("PORT", "LOG_LEVEL", "MAX_UPLOAD_BYTES", "RATE_SYNC_INTERVAL_MINUTES"):
        monkeypatch.delenv(key, raising=False)

    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "files"))

    reset_settings()
    reset_store()
    reset_clients()
    yield
    reset_settings()
    reset_store()
    reset_clients()


@pytest.fixture
def store():
    """Document store on the per-test database."""
    return get_store()
