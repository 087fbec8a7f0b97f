"""Home Assistant integration scaffolding for the VDA IR panel."""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.components import frontend
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import CONF_ACCESS_TOKEN, CONF_URL
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryNotReady
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.helpers.typing import ConfigType
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator

from .api import async_register_http_views
from .const import DEFAULT_URL, DOMAIN, PLATFORMS
from .errors import BackendUnavailableError
from .manager import VdaIrPanelManager
from .registry import DeviceRegistry

_LOGGER = logging.getLogger(__name__)

PANEL_URL_PATH = "vda-ir-panel"

type VdaIrPanelConfigEntry = ConfigEntry


async def async_setup(hass: HomeAssistant, _config: ConfigType) -> bool:
    """Set up the integration from YAML."""
    hass.data.setdefault(DOMAIN, {})
    return True


async def async_setup_entry(hass: HomeAssistant, entry: VdaIrPanelConfigEntry) -> bool:
    """Set up the panel from a config entry."""
    domain_data = hass.data.setdefault(DOMAIN, {})

    options = {**entry.data, **entry.options}
    registry = DeviceRegistry(
        async_get_clientsession(hass),
        options.get(CONF_URL) or DEFAULT_URL,
        options.get(CONF_ACCESS_TOKEN),
    )
    try:
        await registry.async_refresh()
    except BackendUnavailableError as err:
        raise ConfigEntryNotReady(str(err)) from err

    manager = VdaIrPanelManager(registry)
    coordinator = VdaIrPanelCoordinator(hass, registry, manager)
    await coordinator.async_config_entry_first_refresh()

    domain_data[entry.entry_id] = {
        "manager": manager,
        "coordinator": coordinator,
        "registry": registry,
    }

    if not domain_data.get("_http_registered"):
        await async_register_http_views(hass)
        domain_data["_http_registered"] = True

    if not domain_data.get("_panel_registered"):
        _register_panel(hass)
        domain_data["_panel_registered"] = True

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    return True


async def async_unload_entry(hass: HomeAssistant, entry: VdaIrPanelConfigEntry) -> bool:
    """Handle unloading an entry."""
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)

    if unload_ok and (entry_data := hass.data[DOMAIN].pop(entry.entry_id, None)):
        await entry_data["manager"].async_shutdown()
        entry_data["coordinator"].async_shutdown()

    remaining = [key for key in hass.data[DOMAIN] if key not in {"_http_registered", "_panel_registered"}]
    if not remaining:
        _remove_panel(hass)
        hass.data[DOMAIN].pop("_panel_registered", None)

    return unload_ok


async def _async_update_listener(hass: HomeAssistant, entry: VdaIrPanelConfigEntry) -> None:
    """Handle options update."""
    await hass.config_entries.async_reload(entry.entry_id)


def build_state_snapshot(registry: DeviceRegistry, manager: VdaIrPanelManager) -> dict[str, Any]:
    """Return the combined panel state pushed to entities and the state view."""

    state = manager.state.as_dict()
    state["matrix_devices"] = [matrix.as_dict() for matrix in registry.get_matrix_devices()]
    state["links"] = {
        device_id: link.as_dict() if link else None for device_id, link in registry.get_device_links().items()
    }
    return state


class VdaIrPanelCoordinator(DataUpdateCoordinator[dict[str, Any]]):
    """Expose registry and manager state to Home Assistant entities."""

    def __init__(
        self,
        hass: HomeAssistant,
        registry: DeviceRegistry,
        manager: VdaIrPanelManager,
    ) -> None:
        super().__init__(
            hass,
            _LOGGER,
            name="vda_ir_panel",
        )
        self._registry = registry
        self._manager = manager
        self._listener = self._handle_update
        registry.async_add_listener(self._listener)
        manager.async_add_listener(self._listener)

    async def _async_update_data(self) -> dict[str, Any]:
        """Return the latest panel snapshot."""
        return build_state_snapshot(self._registry, self._manager)

    @callback
    def _handle_update(self) -> None:
        self.async_set_updated_data(build_state_snapshot(self._registry, self._manager))

    def async_shutdown(self) -> None:
        self._registry.async_remove_listener(self._listener)
        self._manager.async_remove_listener(self._listener)


def _register_panel(hass: HomeAssistant) -> None:
    frontend.async_register_built_in_panel(
        hass,
        component_name="iframe",
        sidebar_title="VDA IR Control",
        sidebar_icon="mdi:remote",
        frontend_url_path=PANEL_URL_PATH,
        config={"url": "/local/vda_ir_panel/index.html"},
    )


def _remove_panel(hass: HomeAssistant) -> None:
    frontend.async_remove_panel(hass, PANEL_URL_PATH)
