"""
Tests for the connection state machine: OAuth initiation and callback,
non-OAuth onboarding and user lifecycle actions.
"""

import asyncio
import base64
import json
from urllib.parse import parse_qs, urlparse

import pytest
from cryptography.fernet import Fernet
from unittest.mock import AsyncMock

from connectors.encryption import CredentialCipher
from connectors.errors import (
    ConfigurationError,
    InvalidStateError,
    ProviderError,
    SourceNotEligibleError,
    SourceNotFoundError,
)
from connectors.registry import ConnectorRegistry
from connectors.state import encode_state
from connectors.state_machine import ConnectionStateMachine
from connectors.vault import CredentialVault
from database import helpers
from database.models import SourceCredential, SourceStatus
from fakes import FakeConnector


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def registry(connector):
    reg = ConnectorRegistry()
    reg.register(connector)
    return reg


@pytest.fixture
def hook():
    return AsyncMock(return_value=True)


@pytest.fixture
def machine(session_factory, vault, registry, hook):
    return ConnectionStateMachine(session_factory, vault, registry, on_connected=hook)


async def _source(session_factory, tenant_id, source_id):
    async with session_factory() as session:
        return await helpers.get_data_source(session, tenant_id, source_id, include_deleted=True)


def _state_of(url):
    return parse_qs(urlparse(url).query)["state"][0]


class TestInitiate:
    @pytest.mark.asyncio
    async def test_creates_source_before_redirect(self, machine, session_factory):
        initiation = await machine.initiate("t1", "fakebox")

        source = await _source(session_factory, "t1", initiation.source_id)
        assert source is not None
        assert source.status == SourceStatus.CONNECTING.value
        assert source.type == "dropbox"
        assert source.name == "Fakebox (Connecting...)"

    @pytest.mark.asyncio
    async def test_state_decodes_to_source_and_tenant(self, machine):
        initiation = await machine.initiate("t1", "fakebox")

        payload = json.loads(base64.b64decode(_state_of(initiation.redirect_url)))
        assert payload == {"sourceId": initiation.source_id, "tenantId": "t1"}

    @pytest.mark.asyncio
    async def test_each_call_creates_an_independent_source(self, machine, session_factory):
        first = await machine.initiate("t1", "fakebox")
        second = await machine.initiate("t1", "fakebox")

        assert first.source_id != second.source_id
        async with session_factory() as session:
            assert len(await helpers.list_data_sources(session, "t1")) == 2

    @pytest.mark.asyncio
    async def test_missing_tenant_has_no_side_effects(self, machine, session_factory):
        with pytest.raises(ValueError):
            await machine.initiate("", "fakebox")
        async with session_factory() as session:
            assert await helpers.list_all_data_sources(session) == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self, machine):
        with pytest.raises(LookupError):
            await machine.initiate("t1", "nope")

    @pytest.mark.asyncio
    async def test_unconfigured_provider_is_configuration_error(self, session_factory, vault, registry):
        registry.register(FakeConnector(provider="broken", configured=False))
        machine = ConnectionStateMachine(session_factory, vault, registry)

        with pytest.raises(ConfigurationError):
            await machine.initiate("t1", "broken")
        async with session_factory() as session:
            assert await helpers.list_all_data_sources(session) == []


class TestCompleteCallback:
    @pytest.mark.asyncio
    async def test_success_stores_credential_and_connects(self, machine, vault, session_factory, hook):
        initiation = await machine.initiate("t1", "fakebox")

        outcome = await machine.complete_callback("fakebox", _state_of(initiation.redirect_url), code="c1")

        assert outcome.connected is True
        source = await _source(session_factory, "t1", initiation.source_id)
        assert source.status == SourceStatus.CONNECTED.value
        assert source.name == "Fakebox (Jane Doe)"
        credential = await vault.get("t1", initiation.source_id)
        assert credential["access_token"] == "access-c1"
        assert credential["refresh_token"] == "refresh-c1"
        assert credential["kind"] == "oauth"
        hook.assert_awaited_once_with("t1", initiation.source_id)

    @pytest.mark.asyncio
    async def test_duplicate_callback_does_not_spend_code_twice(self, machine, connector, session_factory):
        initiation = await machine.initiate("t1", "fakebox")
        state = _state_of(initiation.redirect_url)

        first = await machine.complete_callback("fakebox", state, code="c1")
        second = await machine.complete_callback("fakebox", state, code="c1")

        assert first.connected and not first.duplicate
        assert second.duplicate and not second.connected
        assert connector.exchanged == ["c1"]
        async with session_factory() as session:
            sources = await helpers.list_data_sources(session, "t1")
        assert [s.status for s in sources] == [SourceStatus.CONNECTED.value]

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_callbacks_exchange_once(self, machine, connector):
        initiation = await machine.initiate("t1", "fakebox")
        state = _state_of(initiation.redirect_url)

        results = await asyncio.gather(
            machine.complete_callback("fakebox", state, code="c1"),
            machine.complete_callback("fakebox", state, code="c1"),
        )

        assert sorted(r.connected for r in results) == [False, True]
        assert connector.exchanged == ["c1"]

    @pytest.mark.asyncio
    async def test_provider_error_marks_source_error(self, machine, vault, session_factory, hook):
        initiation = await machine.initiate("t1", "fakebox")

        outcome = await machine.complete_callback(
            "fakebox",
            _state_of(initiation.redirect_url),
            error="access_denied",
            error_description="The user denied access",
        )

        assert outcome.connected is False
        source = await _source(session_factory, "t1", initiation.source_id)
        assert source.status == SourceStatus.ERROR.value
        assert source.last_error == "access_denied: The user denied access"
        assert await vault.get("t1", initiation.source_id) is None
        hook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exchange_failure_is_terminal_for_attempt(self, machine, connector, session_factory):
        connector.fail_with = ProviderError("fakebox", "invalid_grant")
        initiation = await machine.initiate("t1", "fakebox")

        outcome = await machine.complete_callback("fakebox", _state_of(initiation.redirect_url), code="used")

        assert outcome.status == SourceStatus.ERROR.value
        source = await _source(session_factory, "t1", initiation.source_id)
        assert source.last_error == "fakebox: invalid_grant"

        retry = await machine.initiate("t1", "fakebox")
        assert retry.source_id != initiation.source_id

    @pytest.mark.asyncio
    async def test_state_for_other_tenant_is_rejected(self, machine):
        initiation = await machine.initiate("t1", "fakebox")

        with pytest.raises(SourceNotFoundError):
            await machine.complete_callback("fakebox", encode_state("t2", initiation.source_id), code="c1")

    @pytest.mark.asyncio
    async def test_state_for_other_provider_type_is_rejected(self, machine, registry):
        registry.register(FakeConnector(provider="otherdrive", source_type="gdrive"))
        initiation = await machine.initiate("t1", "fakebox")

        with pytest.raises(InvalidStateError):
            await machine.complete_callback("otherdrive", _state_of(initiation.redirect_url), code="c1")

    @pytest.mark.asyncio
    async def test_garbage_state_is_rejected(self, machine):
        with pytest.raises(InvalidStateError):
            await machine.complete_callback("fakebox", "%%%", code="c1")


class TestOnboarding:
    @pytest.mark.asyncio
    async def test_connect_website_starts_connected(self, machine, hook):
        view = await machine.connect_website("t1", "https://docs.example.com", {"maxPages": 3})

        assert view["status"] == SourceStatus.CONNECTED.value
        assert view["type"] == "website"
        assert view["config"] == {"maxPages": 3, "url": "https://docs.example.com"}
        assert view["lastSyncedAt"] == "never"
        hook.assert_awaited_once_with("t1", view["id"])

    @pytest.mark.asyncio
    async def test_connect_with_api_key_stores_secret(self, machine, vault):
        view = await machine.connect_with_api_key(
            "t1", "github", "Docs repo", {"api_key": "ghp_x"}, {"repo": "acme/docs"}
        )

        assert view["status"] == SourceStatus.CONNECTED.value
        assert await vault.get("t1", view["id"]) == {"kind": "api_key", "api_key": "ghp_x"}

    @pytest.mark.asyncio
    async def test_connect_with_api_key_rejects_oauth_types(self, machine):
        with pytest.raises(ValueError):
            await machine.connect_with_api_key("t1", "dropbox", "x", {"api_key": "k"})

    @pytest.mark.asyncio
    async def test_connect_with_api_key_without_encryption_key_leaves_no_source(
        self, session_factory, registry, hook
    ):
        unkeyed = ConnectionStateMachine(
            session_factory, CredentialVault(session_factory, CredentialCipher([])), registry, on_connected=hook
        )

        with pytest.raises(ConfigurationError):
            await unkeyed.connect_with_api_key("t1", "github", "Docs repo", {"api_key": "ghp_x"})

        async with session_factory() as session:
            assert await helpers.list_data_sources(session, "t1") == []
        hook.assert_not_awaited()


class TestUserActions:
    @pytest.mark.asyncio
    async def test_disconnect_tombstones_and_deletes_credential(self, machine, vault, session_factory):
        view = await machine.connect_with_api_key("t1", "notion", "Wiki", {"api_key": "secret"})

        assert await machine.disconnect("t1", view["id"]) is True
        assert await machine.disconnect("t1", view["id"]) is False

        assert await vault.get("t1", view["id"]) is None
        source = await _source(session_factory, "t1", view["id"])
        assert source.deleted_at is not None
        async with session_factory() as session:
            assert await helpers.list_data_sources(session, "t1") == []

    @pytest.mark.asyncio
    async def test_disconnect_with_undecryptable_credential(self, machine, vault, session_factory, registry, connector):
        initiation = await machine.initiate("t1", "fakebox")
        await machine.complete_callback("fakebox", _state_of(initiation.redirect_url), code="c1")
        connector.revoke_token = AsyncMock()
        rekeyed = ConnectionStateMachine(
            session_factory,
            CredentialVault(session_factory, CredentialCipher([Fernet.generate_key().decode()])),
            registry,
        )

        assert await rekeyed.disconnect("t1", initiation.source_id) is True

        connector.revoke_token.assert_not_awaited()
        assert (await _source(session_factory, "t1", initiation.source_id)).deleted_at is not None
        async with session_factory() as session:
            assert await session.get(SourceCredential, ("t1", initiation.source_id)) is None

    @pytest.mark.asyncio
    async def test_disable_and_enable(self, machine):
        view = await machine.connect_website("t1", "https://docs.example.com")

        disabled = await machine.disable("t1", view["id"])
        assert disabled["status"] == SourceStatus.DISABLED.value
        with pytest.raises(SourceNotEligibleError):
            await machine.disable("t1", view["id"])

        enabled = await machine.enable("t1", view["id"])
        assert enabled["status"] == SourceStatus.CONNECTED.value

    @pytest.mark.asyncio
    async def test_cannot_disable_pending_source(self, machine):
        initiation = await machine.initiate("t1", "fakebox")

        with pytest.raises(SourceNotEligibleError):
            await machine.disable("t1", initiation.source_id)

    @pytest.mark.asyncio
    async def test_rename(self, machine):
        view = await machine.connect_website("t1", "https://docs.example.com")

        renamed = await machine.rename("t1", view["id"], "  Product docs ")

        assert renamed["name"] == "Product docs"
        with pytest.raises(SourceNotFoundError):
            await machine.rename("t2", view["id"], "stolen")
