import importlib
import os
import sys
from pathlib import Path

import pytest

# Ensure the server/ directory is on sys.path so `import authgate.*` works without an install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_ENC_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="  # b64("0123456789abcdef" * 2)

BASE_ENV = {
    "DATABASE_URL": "sqlite+pysqlite:///:memory:",
    "DB_AUTO_CREATE_TABLES": "true",
    "DB_REQUIRE_MIGRATIONS_UP_TO_DATE": "false",
    "ENC_KEY_V1": TEST_ENC_KEY,
    "SESSION_SECRET": "test-session-secret",
    "PRODUCTION": "false",
    "PASSWORD_HASH_ROUNDS": "4",
    "GOOGLE_CLIENT_ID": "",
    "GOOGLE_CLIENT_SECRET": "",
}

# Test-suite guardrails: never pick up a developer's real database or keys.
os.environ.update(BASE_ENV)


def reload_app_modules():
    for k in list(sys.modules.keys()):
        if k == "authgate" or k.startswith("authgate."):
            sys.modules.pop(k, None)


@pytest.fixture
def build_app(monkeypatch):
    """Return a factory that builds a fresh app on a fresh in-memory database."""

    def _build(**overrides):
        for k, v in {**BASE_ENV, **overrides}.items():
            monkeypatch.setenv(k, v)
        reload_app_modules()
        app_factory = importlib.import_module("authgate.app_factory")
        return app_factory.create_app()

    return _build


@pytest.fixture
def client(build_app):
    from fastapi.testclient import TestClient

    app = build_app()
    with TestClient(app) as c:
        yield c
