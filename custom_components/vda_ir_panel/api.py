"""HTTP endpoints for the VDA IR panel."""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web
from homeassistant.components.http import HomeAssistantView
from homeassistant.core import HomeAssistant

from .commands import parse_command
from .const import DOMAIN
from .errors import BackendUnavailableError, VdaIrPanelError
from .reconciler import TopologyReconciler
from .registry import serialize_registry_snapshot

_LOGGER = logging.getLogger(__name__)


async def async_register_http_views(hass: HomeAssistant) -> None:
    """Register HTTP views for the integration."""
    hass.http.register_view(VdaIrPanelStateView(hass))
    hass.http.register_view(VdaIrPanelCommandView(hass))
    hass.http.register_view(VdaIrPanelEntriesView(hass))
    hass.http.register_view(VdaIrPanelRegistryView(hass))
    hass.http.register_view(VdaIrPanelMatrixPlanView(hass))


class VdaIrPanelBaseView(HomeAssistantView):
    """Shared helpers for panel HTTP views."""

    requires_auth = True

    def __init__(self, hass: HomeAssistant) -> None:
        self.hass = hass

    def _resolve_entry(self, entry_id: str) -> dict[str, Any]:
        """Return the integration data for an entry id."""
        domain_data = self.hass.data.get(DOMAIN, {})
        entry_data = domain_data.get(entry_id)
        if entry_data is None:
            raise web.HTTPNotFound(text="Invalid entry id")
        return entry_data


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as err:
        raise web.HTTPBadRequest(text="Body must be JSON") from err
    if not isinstance(payload, dict):
        raise web.HTTPBadRequest(text="Body must be a JSON object")
    return payload


class VdaIrPanelStateView(VdaIrPanelBaseView):
    """Expose manager state to the custom panel."""

    url = "/api/vda_ir_panel/{entry_id}/state"
    name = "api:vda_ir_panel:state"

    async def get(self, request: web.Request, entry_id: str) -> web.Response:
        entry_data = self._resolve_entry(entry_id)
        coordinator = entry_data["coordinator"]
        return web.json_response(coordinator.data or entry_data["manager"].state.as_dict())


class VdaIrPanelCommandView(VdaIrPanelBaseView):
    """Allow the custom panel to send commands."""

    url = "/api/vda_ir_panel/{entry_id}/command"
    name = "api:vda_ir_panel:command"

    async def post(self, request: web.Request, entry_id: str) -> web.Response:
        entry_data = self._resolve_entry(entry_id)
        manager = entry_data["manager"]
        payload = await _read_json(request)

        try:
            command = parse_command(payload)
        except ValueError as err:
            raise web.HTTPBadRequest(text=str(err)) from err

        _LOGGER.debug("API command entry=%s command=%s", entry_id, command)
        try:
            result = await manager.async_dispatch(command)
        except BackendUnavailableError as err:
            raise web.HTTPBadGateway(text=str(err)) from err
        except (VdaIrPanelError, ValueError) as err:
            raise web.HTTPBadRequest(text=str(err)) from err
        return web.json_response({"status": "ok", "result": result})


class VdaIrPanelEntriesView(HomeAssistantView):
    """Expose available config entries."""

    url = "/api/vda_ir_panel/entries"
    name = "api:vda_ir_panel:entries"
    requires_auth = True

    def __init__(self, hass: HomeAssistant) -> None:
        self.hass = hass

    async def get(self, request: web.Request) -> web.Response:
        entries = [
            {
                "entry_id": entry.entry_id,
                "title": entry.title,
            }
            for entry in self.hass.config_entries.async_entries(DOMAIN)
        ]
        return web.json_response(entries)


class VdaIrPanelRegistryView(VdaIrPanelBaseView):
    """Expose the cached boards, profiles, devices and links."""

    url = "/api/vda_ir_panel/{entry_id}/registry"
    name = "api:vda_ir_panel:registry"

    async def get(self, request: web.Request, entry_id: str) -> web.Response:
        entry_data = self._resolve_entry(entry_id)
        registry = entry_data["registry"]
        if request.query.get("refresh"):
            try:
                await registry.async_refresh()
            except BackendUnavailableError as err:
                raise web.HTTPBadGateway(text=str(err)) from err
        return web.json_response(serialize_registry_snapshot(registry))


class VdaIrPanelMatrixPlanView(VdaIrPanelBaseView):
    """Preview the operations a matrix I/O edit would issue, without applying them."""

    url = "/api/vda_ir_panel/{entry_id}/matrix/{matrix_id}/plan"
    name = "api:vda_ir_panel:matrix_plan"

    async def post(self, request: web.Request, entry_id: str, matrix_id: str) -> web.Response:
        entry_data = self._resolve_entry(entry_id)
        registry = entry_data["registry"]
        snapshot = await _read_json(request)

        try:
            matrix = await registry.async_get_matrix_device(matrix_id)
            plan = TopologyReconciler(registry).plan(matrix, snapshot, registry.get_device_links())
        except BackendUnavailableError as err:
            raise web.HTTPBadGateway(text=str(err)) from err
        except (VdaIrPanelError, ValueError) as err:
            raise web.HTTPBadRequest(text=str(err)) from err
        return web.json_response(plan.as_dict())
