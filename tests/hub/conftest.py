"""Shared fixtures for tests/hub/ test suite.

Provides the API hub mock and test client used by test_api.py. The hub is a
spec'd MagicMock whose ``flow_checker`` module is itself a mock, so the
routes can be exercised without a database or a Homey connection.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from flowchecker.hub.api import create_api
from flowchecker.hub.core import FlowCheckerHub
from flowchecker.hub.settings import SettingsBundle


@pytest.fixture
def flow_checker_module():
    """Mock FlowCheckerModule with a default settings bundle."""
    module = MagicMock()
    module.module_id = "flow_checker"
    module.store.bundle = SettingsBundle()
    module.has_problems = MagicMock(return_value=False)
    module.run_check = AsyncMock(return_value={"status": "ok", "categories": [], "events": 0})
    module.set_interval = AsyncMock()
    module.set_enabled = AsyncMock()
    module.set_notification = AsyncMock(return_value=True)
    module.get_last_report = AsyncMock(return_value=None)
    module.status = MagicMock(return_value={"checks_run": 0})
    return module


@pytest.fixture
def api_hub(flow_checker_module):
    """Create a mock FlowCheckerHub for API endpoint tests."""
    mock_hub = MagicMock(spec=FlowCheckerHub)
    mock_hub.cache = MagicMock()
    mock_hub.modules = {"flow_checker": flow_checker_module}
    mock_hub.module_status = {"flow_checker": "running"}
    mock_hub.subscribers = {}
    mock_hub.subscribe = MagicMock()
    mock_hub.publish = AsyncMock()
    mock_hub.get_module = MagicMock(side_effect=lambda module_id: mock_hub.modules.get(module_id))
    mock_hub.get_uptime_seconds = MagicMock(return_value=0)
    return mock_hub


@pytest.fixture
def api_client(api_hub):
    """Create a FastAPI TestClient backed by api_hub."""
    app = create_api(api_hub)
    return TestClient(app)
