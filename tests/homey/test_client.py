"""Tests for the Homey Web API client and record parsing."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from flowchecker.homey.client import (
    FLOWS_PATH,
    NOTIFICATIONS_PATH,
    HomeyClient,
    HomeyConfig,
    HostAPIError,
)
from flowchecker.homey.models import Flow, FlowCard, LogicVariable, parse_collection

# ============================================================================
# Helpers
# ============================================================================


def mock_response(status=200, payload=None, text=""):
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def client_with(*responses):
    """HomeyClient whose session returns the given responses in order."""
    client = HomeyClient("http://homey.local/", "token")
    session = MagicMock()
    session.request = MagicMock(side_effect=list(responses))
    client._session = session
    return client


FLOWS = {
    "f1": {"id": "f1", "name": "Morning", "enabled": True, "broken": True, "trigger": {"uri": "homey:manager:cron"}},
    "f2": {"id": "f2", "name": "Night", "enabled": False, "broken": False},
    "f3": {"name": "no id"},
}

VARIABLES = {"v1": {"id": "v1", "name": "Counter", "type": "number"}}


# ============================================================================
# Config
# ============================================================================


class TestHomeyConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HOMEY_URL", "http://10.0.0.5")
        monkeypatch.setenv("HOMEY_TOKEN", "secret")
        monkeypatch.setenv("FLOWCHECKER_TRIGGER_WEBHOOK", "")

        config = HomeyConfig.from_env()

        assert config.url == "http://10.0.0.5"
        assert config.token == "secret"
        assert config.trigger_webhook is None

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("HOMEY_URL", raising=False)
        monkeypatch.delenv("HOMEY_TOKEN", raising=False)

        config = HomeyConfig.from_env()

        assert config.url == "http://homey.local"
        assert config.token == ""


# ============================================================================
# Requests
# ============================================================================


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_flows_parses_and_drops_records_without_id(self):
        client = client_with(mock_response(payload=FLOWS))

        flows = await client.get_flows()

        assert [f.id for f in flows] == ["f1", "f2"]
        method, url = client._session.request.call_args.args
        assert (method, url) == ("GET", f"http://homey.local{FLOWS_PATH}")

    @pytest.mark.asyncio
    async def test_get_flows_filters(self):
        client = client_with(mock_response(payload=FLOWS), mock_response(payload=FLOWS))

        assert [f.id for f in await client.get_flows(broken=True)] == ["f1"]
        assert [f.id for f in await client.get_flows(enabled=False)] == ["f2"]

    @pytest.mark.asyncio
    async def test_get_listing(self):
        client = HomeyClient("http://homey.local", "token")
        client.get_flows = AsyncMock(return_value=[Flow(id="f1", name="A")])
        client.get_variables = AsyncMock(return_value=[LogicVariable(id="v1")])

        listing = await client.get_listing()

        assert [f.id for f in listing.flows] == ["f1"]
        assert listing.variable_ids == frozenset({"v1"})

    @pytest.mark.asyncio
    async def test_create_notification(self):
        client = client_with(mock_response(status=204))

        await client.create_notification("FlowChecker - Event: BROKEN - Flow: **Morning**")

        call = client._session.request.call_args
        assert call.args == ("POST", f"http://homey.local{NOTIFICATIONS_PATH}")
        assert call.kwargs["json"] == {"excerpt": "FlowChecker - Event: BROKEN - Flow: **Morning**"}

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = client_with(mock_response(status=401, text="Unauthorized"))

        with pytest.raises(HostAPIError, match="HTTP 401"):
            await client.get_variables()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        client = HomeyClient("http://homey.local", "token")
        client._session = MagicMock()
        client._session.request = MagicMock(side_effect=aiohttp.ClientError("Connection refused"))

        with pytest.raises(HostAPIError, match="Connection refused"):
            await client.get_flows()

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        client = client_with(mock_response(payload="oops"))

        with pytest.raises(HostAPIError, match="Unexpected flow listing"):
            await client.get_flows()

    @pytest.mark.asyncio
    async def test_not_opened(self):
        client = HomeyClient("http://homey.local", "token")

        with pytest.raises(HostAPIError, match="not opened"):
            await client.ping()


# ============================================================================
# Record parsing
# ============================================================================


class TestModels:
    def test_parse_collection_accepts_list(self):
        variables = parse_collection([VARIABLES["v1"], "junk"], LogicVariable.from_api)
        assert variables == [LogicVariable(id="v1", name="Counter", type="number")]

    def test_flow_card_referenced_id(self):
        card = FlowCard.from_api({"uri": "homey:manager:flow", "args": {"flow": {"id": "f9"}, "text": "hi"}})

        assert card.referenced_id("flow") == "f9"
        assert card.referenced_id("text") is None
        assert card.string_args() == ["hi"]

    def test_flow_card_from_garbage(self):
        assert FlowCard.from_api(None) == FlowCard()
