"""
Shared fixtures.

Environment variables are set before any project module is imported so the
module-level ``config`` picks them up.
"""

import base64
import os

TEST_FERNET_KEY = base64.urlsafe_b64encode(b"k" * 32).decode()

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CREDENTIAL_ENCRYPTION_KEY"] = TEST_FERNET_KEY
os.environ["APP_URL"] = "https://app.example.com"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["DROPBOX_APP_KEY"] = "dbx-key"
os.environ["DROPBOX_APP_SECRET"] = "dbx-secret"
os.environ["GOOGLE_CLIENT_ID"] = "google-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "google-secret"
os.environ["MICROSOFT_CLIENT_ID"] = ""
os.environ["MICROSOFT_CLIENT_SECRET"] = ""
os.environ["TAGGING_ENABLED"] = "false"
os.environ["CRAWLER_DELAY_SECONDS"] = "0"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from connectors.registry import ConnectorRegistry  # noqa: E402
from connectors.vault import CredentialVault  # noqa: E402
from database.session import build_session_factory, create_schema  # noqa: E402
from fakes import sqlite_engine  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = sqlite_engine(tmp_path / "test.db")
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def vault(session_factory):
    return CredentialVault(session_factory)


@pytest.fixture(autouse=True)
def reset_registry():
    ConnectorRegistry.reset()
    yield
    ConnectorRegistry.reset()
