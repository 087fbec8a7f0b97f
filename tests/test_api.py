"""Tests for the panel HTTP views."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web

from custom_components.vda_ir_panel.api import VdaIrPanelCommandView, VdaIrPanelStateView
from custom_components.vda_ir_panel.commands import RouteMatrix
from custom_components.vda_ir_panel.const import DOMAIN
from custom_components.vda_ir_panel.errors import BackendUnavailableError, PortDisabledError


@pytest.fixture
def manager():
    """Return a manager mock whose dispatch succeeds."""
    manager = MagicMock()
    manager.async_dispatch = AsyncMock(return_value={"success": True})
    return manager


@pytest.fixture
def hass(manager):
    """Return a hass mock holding one config entry."""
    hass = MagicMock()
    coordinator = MagicMock()
    coordinator.data = {"learning": {}}
    hass.data = {DOMAIN: {"entry1": {"manager": manager, "coordinator": coordinator}}}
    return hass


def _request(payload):
    request = MagicMock()
    request.json = AsyncMock(return_value=payload)
    return request


ROUTE = {"command": "route_matrix", "matrix_id": "matrix1", "input": 1, "output": 2}


class TestCommandView:
    """Tests for the command endpoint."""

    async def test_dispatches_parsed_command(self, hass, manager):
        """Test a valid body is parsed and dispatched."""
        response = await VdaIrPanelCommandView(hass).post(_request(ROUTE), "entry1")

        manager.async_dispatch.assert_awaited_once_with(RouteMatrix("matrix1", 1, 2))
        assert json.loads(response.text) == {"status": "ok", "result": {"success": True}}

    async def test_invalid_command(self, hass, manager):
        """Test an invalid body is a bad request."""
        with pytest.raises(web.HTTPBadRequest):
            await VdaIrPanelCommandView(hass).post(_request({"command": "route_matrix"}), "entry1")
        manager.async_dispatch.assert_not_awaited()

    async def test_domain_error_is_bad_request(self, hass, manager):
        """Test a refused action maps to a bad request."""
        manager.async_dispatch.side_effect = PortDisabledError("Input 1 on matrix1 is disabled")
        with pytest.raises(web.HTTPBadRequest):
            await VdaIrPanelCommandView(hass).post(_request(ROUTE), "entry1")

    async def test_backend_error_is_bad_gateway(self, hass, manager):
        """Test an unreachable backend maps to a bad gateway."""
        manager.async_dispatch.side_effect = BackendUnavailableError("timed out")
        with pytest.raises(web.HTTPBadGateway):
            await VdaIrPanelCommandView(hass).post(_request(ROUTE), "entry1")

    async def test_unknown_entry(self, hass):
        """Test an unknown entry id is not found."""
        with pytest.raises(web.HTTPNotFound):
            await VdaIrPanelCommandView(hass).post(_request(ROUTE), "missing")


class TestStateView:
    """Tests for the state endpoint."""

    async def test_returns_coordinator_data(self, hass):
        """Test the coordinator snapshot is returned."""
        response = await VdaIrPanelStateView(hass).get(MagicMock(), "entry1")
        assert json.loads(response.text) == {"learning": {}}
