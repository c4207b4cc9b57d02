"""Async client for the parts of the Homey Web API FlowChecker uses."""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any

import aiohttp

from flowchecker.homey.models import Flow, HostListing, LogicVariable, parse_collection

logger = logging.getLogger(__name__)

FLOWS_PATH = "/api/manager/flow/flow"
VARIABLES_PATH = "/api/manager/logic/variable"
NOTIFICATIONS_PATH = "/api/manager/notifications/notification"
SYSTEM_PATH = "/api/manager/system/"


class HostAPIError(Exception):
    """A Homey request failed: network error, non-2xx status or bad payload."""


@dataclass
class HomeyConfig:
    """Homey connection settings."""

    url: str = "http://homey.local"
    token: str = ""
    trigger_webhook: str | None = None

    @classmethod
    def from_env(cls):
        return cls(
            url=os.environ.get("HOMEY_URL", cls.url),
            token=os.environ.get("HOMEY_TOKEN", ""),
            trigger_webhook=os.environ.get("FLOWCHECKER_TRIGGER_WEBHOOK") or None,
        )


class HomeyClient:
    """Reads flows and logic variables, creates timeline notifications."""

    def __init__(self, homey_url: str, homey_token: str, timeout: float = 15):
        """Initialize client.

        Args:
            homey_url: Homey base URL (e.g., "http://192.168.1.40")
            homey_token: Homey API bearer token
            timeout: Total timeout per request in seconds
        """
        self.homey_url = homey_url.rstrip("/")
        self.homey_token = homey_token
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def open(self):
        """Create the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.homey_token}", "Content-Type": "application/json"}
            )

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        if self._session is None:
            raise HostAPIError("Homey client not opened. Call open() first.")

        url = f"{self.homey_url}{path}"
        try:
            async with self._session.request(
                method, url, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise HostAPIError(f"{method} {path} returned HTTP {response.status}: {error_text[:200]}")
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except (TimeoutError, aiohttp.ClientError) as e:
            raise HostAPIError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise HostAPIError(f"{method} {path} returned invalid JSON: {e}") from e

    async def get_flows(self, broken: bool | None = None, enabled: bool | None = None) -> list[Flow]:
        """List flows, optionally filtered by broken and enabled state.

        Homey has no server-side filter on this endpoint, so the filter is
        applied after parsing.
        """
        payload = await self._request("GET", FLOWS_PATH)
        try:
            flows = parse_collection(payload, Flow.from_api)
        except TypeError as e:
            raise HostAPIError(f"Unexpected flow listing: {e}") from e

        if broken is not None:
            flows = [f for f in flows if f.broken == broken]
        if enabled is not None:
            flows = [f for f in flows if f.enabled == enabled]
        return flows

    async def get_variables(self) -> list[LogicVariable]:
        """List all logic variables."""
        payload = await self._request("GET", VARIABLES_PATH)
        try:
            return parse_collection(payload, LogicVariable.from_api)
        except TypeError as e:
            raise HostAPIError(f"Unexpected variable listing: {e}") from e

    async def get_listing(self) -> HostListing:
        """Fetch flows and variables together for one check pass."""
        flows, variables = await asyncio.gather(self.get_flows(), self.get_variables())
        logger.debug("Fetched %d flows and %d logic variables", len(flows), len(variables))
        return HostListing(flows=tuple(flows), variables=tuple(variables))

    async def create_notification(self, excerpt: str) -> None:
        """Create a Homey timeline notification."""
        await self._request("POST", NOTIFICATIONS_PATH, {"excerpt": excerpt})

    async def ping(self) -> dict[str, Any]:
        """Read system info, used as a connectivity check."""
        return await self._request("GET", SYSTEM_PATH) or {}
