"""Sensor platform reporting IR learning progress."""

from __future__ import annotations

from typing import Any

from homeassistant.components.sensor import SensorEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN
from .learning import LearningStatus


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the learning status sensor from a config entry."""
    coordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    async_add_entities([LearningStatusSensor(coordinator, entry)])


class LearningStatusSensor(CoordinatorEntity, SensorEntity):
    """Status of the most recently started learning session."""

    _attr_name = "IR Learning Status"
    _attr_icon = "mdi:remote"

    def __init__(self, coordinator, entry: ConfigEntry) -> None:
        super().__init__(coordinator)
        self._entry = entry
        self._attr_unique_id = f"{entry.entry_id}_learning_status"

    @property
    def device_info(self) -> DeviceInfo:
        return DeviceInfo(
            identifiers={(DOMAIN, self._entry.entry_id)},
            name="VDA IR Panel",
            manufacturer="VDA",
            model="IR Control Panel",
        )

    def _session(self) -> dict[str, Any] | None:
        data = self.coordinator.data or {}
        profile_id = data.get("last_learning_profile")
        if not profile_id:
            return None
        return (data.get("learning") or {}).get(profile_id)

    @property
    def native_value(self) -> str:
        session = self._session()
        return session["status"] if session else str(LearningStatus.IDLE)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        session = self._session() or {}
        return {
            "command": session.get("command"),
            "profile_id": session.get("profile_id"),
            "board_id": session.get("board_id"),
            "port": session.get("port"),
            "attempts": session.get("attempts", 0),
        }
