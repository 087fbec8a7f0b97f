"""Config flow for the VDA IR panel integration."""

from __future__ import annotations

from typing import Any

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.const import CONF_ACCESS_TOKEN, CONF_NAME, CONF_URL

from .const import DEFAULT_NAME, DEFAULT_URL, DOMAIN


def _normalize_url(value: str) -> str:
    value = value.strip().rstrip("/")
    if not value.startswith(("http://", "https://")):
        raise vol.Invalid("URL must start with http:// or https://")
    return value


class VdaIrPanelConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle the config flow for the VDA IR panel."""

    VERSION = 1

    async def async_step_user(self, user_input: dict[str, Any] | None = None):
        """Ask for the Home Assistant URL and token the backend API is served from."""
        errors: dict[str, str] = {}
        if user_input is not None:
            try:
                url = _normalize_url(user_input[CONF_URL])
            except vol.Invalid:
                errors[CONF_URL] = "invalid_url"
            else:
                await self.async_set_unique_id(url)
                self._abort_if_unique_id_configured()
                title = user_input[CONF_NAME]
                return self.async_create_entry(
                    title=title,
                    data={
                        CONF_NAME: title,
                        CONF_URL: url,
                        CONF_ACCESS_TOKEN: user_input.get(CONF_ACCESS_TOKEN) or None,
                    },
                )

        schema = vol.Schema(
            {
                vol.Required(CONF_NAME, default=DEFAULT_NAME): str,
                vol.Required(CONF_URL, default=DEFAULT_URL): str,
                vol.Optional(CONF_ACCESS_TOKEN): str,
            }
        )
        return self.async_show_form(step_id="user", data_schema=schema, errors=errors)
