"""Client-side cache of the VDA IR Control backend's boards, profiles and devices."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from copy import deepcopy
from typing import Any

import aiohttp
from homeassistant.core import callback

from .const import (
    API_BOARDS,
    API_DEVICES,
    API_HA_DEVICES,
    API_LEARNING,
    API_NETWORK_DEVICES,
    API_PORTS,
    API_PROFILES,
    API_SERIAL_DEVICES,
    API_SERVICES,
    COMMAND_RESPONSE_TIMEOUT,
    DEVICE_KIND_HA,
    DEVICE_KIND_IR,
    DEVICE_KIND_SERIAL,
    DEVICE_TYPE_MATRIX,
    PORT_MODE_IR_INPUT,
    PORT_TYPE_INPUT,
    PORT_TYPES,
    REQUEST_TIMEOUT_SECONDS,
    SERVICE_DELETE_DEVICE,
    SERVICE_START_LEARNING,
    SERVICE_UPDATE_DEVICE,
    TRANSPORT_NETWORK,
    TRANSPORT_SERIAL,
)
from .errors import BackendUnavailableError
from .models import DeviceLink, MatrixDevice
from .template import split_line_ending

_LOGGER = logging.getLogger(__name__)

RegistryListener = Callable[[], None]

_SECTIONS: dict[str, tuple[str, str]] = {
    "boards": (API_BOARDS, "boards"),
    "profiles": (API_PROFILES, "profiles"),
    "devices": (API_DEVICES, "devices"),
    "serial_devices": (API_SERIAL_DEVICES, "devices"),
    "network_devices": (API_NETWORK_DEVICES, "devices"),
    "ha_devices": (API_HA_DEVICES, "devices"),
}


def _device_endpoint(transport: str) -> str:
    return API_NETWORK_DEVICES if transport == TRANSPORT_NETWORK else API_SERIAL_DEVICES


def _extract_list(payload: Any, key: str) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = payload.get(key) or []
    else:
        items = []
    return [item for item in items if isinstance(item, dict)]


class DeviceRegistry:
    """Talk to the backend REST API and cache what it returns."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        access_token: str | None = None,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._data: dict[str, list[dict[str, Any]]] = {section: [] for section in _SECTIONS}
        self._matrix_details: dict[str, dict[str, Any]] = {}
        self._listeners: list[RegistryListener] = []
        self._refresh_lock = asyncio.Lock()

    # General helpers ---------------------------------------------------------------

    @property
    def data(self) -> dict[str, list[dict[str, Any]]]:
        return self._data

    @callback
    def async_add_listener(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    @callback
    def async_remove_listener(self, listener: RegistryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @callback
    def _async_notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    async def _async_request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> Any:
        """Issue one request and return its decoded JSON body."""

        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        url = f"{self._base_url}{path}"
        _LOGGER.debug("%s %s payload=%s", method, path, payload)
        try:
            async with self._session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = None
                if resp.status >= 400:
                    message = body.get("error") if isinstance(body, dict) else None
                    raise BackendUnavailableError(
                        f"{method} {path} failed with status {resp.status}: {message or resp.reason}"
                    )
                return body
        except aiohttp.ClientError as err:
            raise BackendUnavailableError(f"{method} {path} failed: {err}") from err
        except asyncio.TimeoutError as err:
            raise BackendUnavailableError(f"{method} {path} timed out") from err

    async def _async_call_service(self, service: str, data: dict[str, Any]) -> None:
        await self._async_request("POST", f"{API_SERVICES}/{service}", payload=data)

    # Loading -----------------------------------------------------------------------

    async def async_refresh(self) -> None:
        """Reload every cached section from the backend."""
        async with self._refresh_lock:
            for section in _SECTIONS:
                self._data[section] = await self._async_load_section(section)
            details: dict[str, dict[str, Any]] = {}
            for transport, record in self.get_matrix_records():
                device_id = record["device_id"]
                detail = await self._async_request("GET", f"{_device_endpoint(transport)}/{device_id}")
                if isinstance(detail, dict):
                    details[device_id] = {**record, **detail}
            self._matrix_details = details
        self._async_notify()

    async def async_refresh_profiles(self) -> None:
        async with self._refresh_lock:
            self._data["profiles"] = await self._async_load_section("profiles")
        self._async_notify()

    async def _async_load_section(self, section: str) -> list[dict[str, Any]]:
        path, key = _SECTIONS[section]
        return _extract_list(await self._async_request("GET", path), key)

    def get_boards(self) -> list[dict[str, Any]]:
        return list(self._data["boards"])

    def get_profiles(self) -> list[dict[str, Any]]:
        return list(self._data["profiles"])

    def get_profile(self, profile_id: str) -> dict[str, Any] | None:
        for profile in self._data["profiles"]:
            if profile.get("profile_id") == profile_id:
                return profile
        return None

    def get_devices(self) -> list[dict[str, Any]]:
        return list(self._data["devices"])

    def get_serial_devices(self) -> list[dict[str, Any]]:
        return list(self._data["serial_devices"])

    def get_network_devices(self) -> list[dict[str, Any]]:
        return list(self._data["network_devices"])

    def get_ha_devices(self) -> list[dict[str, Any]]:
        return list(self._data["ha_devices"])

    def get_matrix_records(self) -> list[tuple[str, dict[str, Any]]]:
        """Return ``(transport, record)`` pairs for every cached matrix device."""
        result: list[tuple[str, dict[str, Any]]] = []
        for transport, section in ((TRANSPORT_SERIAL, "serial_devices"), (TRANSPORT_NETWORK, "network_devices")):
            for record in self._data[section]:
                if record.get("device_type") == DEVICE_TYPE_MATRIX and record.get("device_id"):
                    result.append((transport, self._matrix_details.get(record["device_id"], record)))
        return result

    def get_matrix_devices(self) -> list[MatrixDevice]:
        return [MatrixDevice.from_record(record, transport=transport) for transport, record in self.get_matrix_records()]

    def get_matrix_transport(self, device_id: str) -> str | None:
        for transport, record in self.get_matrix_records():
            if record.get("device_id") == device_id:
                return transport
        return None

    def get_device_kind(self, device_id: str) -> str | None:
        """Classify a device id by where its link is stored."""
        if any(d.get("device_id") == device_id for d in self._data["ha_devices"]):
            return DEVICE_KIND_HA
        if any(
            d.get("device_id") == device_id and d.get("device_type") != DEVICE_TYPE_MATRIX
            for d in self._data["serial_devices"]
        ):
            return DEVICE_KIND_SERIAL
        if any(d.get("device_id") == device_id for d in self._data["devices"]):
            return DEVICE_KIND_IR
        return None

    def get_device_links(self) -> dict[str, DeviceLink | None]:
        """Return the current matrix link of every device that can hold one.

        IR and HA devices carry the link on their own record. Serial devices
        do not; their link is whatever matrix port lists them.
        """

        links: dict[str, DeviceLink | None] = {}
        for record in self._data["devices"]:
            if device_id := record.get("device_id"):
                links[device_id] = DeviceLink.from_record(record)
        for record in self._data["ha_devices"]:
            if device_id := record.get("device_id"):
                links[device_id] = DeviceLink.from_record(record, default_port_type=PORT_TYPE_INPUT)

        serial_ids = {
            record["device_id"]
            for record in self._data["serial_devices"]
            if record.get("device_id") and record.get("device_type") != DEVICE_TYPE_MATRIX
        }
        for device_id in serial_ids:
            links[device_id] = None
        for matrix in self.get_matrix_devices():
            for port_type in PORT_TYPES:
                for port in matrix.table(port_type):
                    if port.device_id in serial_ids and links.get(port.device_id) is None:
                        links[port.device_id] = matrix.link_for(port_type, port.index)
        return links

    # Matrix devices ----------------------------------------------------------------

    async def async_get_matrix_device(self, device_id: str, *, transport: str | None = None) -> MatrixDevice:
        transport = transport or self.get_matrix_transport(device_id) or TRANSPORT_SERIAL
        record = await self._async_request("GET", f"{_device_endpoint(transport)}/{device_id}")
        if not isinstance(record, dict):
            raise BackendUnavailableError(f"Matrix {device_id} returned no data")
        self._matrix_details[device_id] = record
        return MatrixDevice.from_record(record, transport=transport)

    async def async_put_matrix_device(self, matrix: MatrixDevice) -> None:
        await self._async_request(
            "PUT",
            f"{_device_endpoint(matrix.transport)}/{matrix.id}",
            payload=matrix.persist_payload(),
        )
        _LOGGER.debug("Saved matrix %s I/O", matrix.id)

    async def async_delete_matrix_device(self, device_id: str, *, transport: str) -> None:
        await self._async_request("DELETE", f"{_device_endpoint(transport)}/{device_id}")

    async def async_delete_device(self, device_id: str) -> None:
        kind = self.get_device_kind(device_id)
        if kind == DEVICE_KIND_HA:
            await self._async_request("DELETE", f"{API_HA_DEVICES}/{device_id}")
        elif kind == DEVICE_KIND_SERIAL:
            await self._async_request("DELETE", f"{API_SERIAL_DEVICES}/{device_id}")
        else:
            await self._async_call_service(SERVICE_DELETE_DEVICE, {"device_id": device_id})

    # Device links ------------------------------------------------------------------

    async def async_update_device_link(self, device_id: str, link: DeviceLink | None) -> None:
        """Write (or clear, with ``None``) a device's back-reference to a matrix port."""

        kind = self.get_device_kind(device_id)
        if kind == DEVICE_KIND_SERIAL:
            _LOGGER.debug("Serial device %s link is held by the matrix port table", device_id)
            return

        if kind == DEVICE_KIND_HA:
            await self._async_request(
                "PUT",
                f"{API_HA_DEVICES}/{device_id}",
                payload={
                    "matrix_device_id": link.matrix_device_id if link else "",
                    "matrix_device_type": link.matrix_device_transport if link else "",
                    "matrix_port_type": link.port_type if link else "",
                    "matrix_port": link.port_index if link else "",
                },
            )
        else:
            await self._async_call_service(
                SERVICE_UPDATE_DEVICE,
                {
                    "device_id": device_id,
                    "matrix_device_id": link.matrix_device_id if link else None,
                    "matrix_device_type": link.matrix_device_transport if link else None,
                    "matrix_port_type": link.port_type if link else None,
                    "matrix_port": link.port_index if link else None,
                },
            )
        _LOGGER.debug("Updated %s device %s matrix link: %s", kind or "ir", device_id, link)

    # Learning ----------------------------------------------------------------------

    async def async_get_board_ports(self, board_id: str) -> list[dict[str, Any]]:
        return _extract_list(await self._async_request("GET", f"{API_PORTS}/{board_id}"), "ports")

    async def async_get_learning_ports(self, board_id: str) -> list[dict[str, Any]]:
        return [port for port in await self.async_get_board_ports(board_id) if port.get("mode") == PORT_MODE_IR_INPUT]

    async def async_start_learning(
        self,
        board_id: str,
        profile_id: str,
        command: str,
        port: int,
        timeout_seconds: int,
    ) -> None:
        await self._async_call_service(
            SERVICE_START_LEARNING,
            {
                "board_id": board_id,
                "profile_id": profile_id,
                "command": command,
                "port": port,
                "timeout": timeout_seconds,
            },
        )

    async def async_poll_learning_status(self, board_id: str) -> dict[str, Any]:
        status = await self._async_request("GET", f"{API_LEARNING}/{board_id}")
        return status if isinstance(status, dict) else {}

    @callback
    def record_learned_command(self, profile_id: str, command: str) -> None:
        """Add ``command`` to the cached profile's learned commands, once."""
        profile = self.get_profile(profile_id)
        if profile is None:
            return
        learned = list(profile.get("learned_commands") or [])
        if command not in learned:
            learned.append(command)
        profile["learned_commands"] = learned
        self._async_notify()

    # Commands ----------------------------------------------------------------------

    async def async_send_device_command(
        self,
        device_id: str,
        payload: str,
        line_ending: str | None,
        *,
        transport: str = TRANSPORT_SERIAL,
        wait_for_response: bool = True,
        timeout: float = COMMAND_RESPONSE_TIMEOUT,
    ) -> dict[str, Any]:
        """Send a rendered payload and report ``{success, response?, error?}``.

        A failed command is reported in the result rather than raised; only a
        backend that cannot be reached at all raises.
        """

        policy, suffix = split_line_ending(line_ending)
        body = {
            "payload": f"{payload}{suffix}",
            "format": "text",
            "line_ending": policy,
            "wait_for_response": wait_for_response,
            "timeout": timeout,
        }
        try:
            result = await self._async_request(
                "POST",
                f"{_device_endpoint(transport)}/{device_id}/send",
                payload=body,
                timeout=max(REQUEST_TIMEOUT_SECONDS, timeout + 1),
            )
        except BackendUnavailableError as err:
            if isinstance(err.__cause__, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
                raise
            return {"success": False, "error": str(err)}

        result = result if isinstance(result, dict) else {}
        response: dict[str, Any] = {"success": bool(result.get("success", "error" not in result))}
        if result.get("response") is not None:
            response["response"] = result["response"]
        if result.get("error"):
            response["error"] = result["error"]
        return response


def serialize_registry_snapshot(registry: DeviceRegistry) -> dict[str, Any]:
    """Return a safe snapshot of registry contents for the API."""

    return {
        "boards": deepcopy(registry.get_boards()),
        "profiles": deepcopy(registry.get_profiles()),
        "devices": deepcopy(registry.get_devices()),
        "serial_devices": deepcopy(registry.get_serial_devices()),
        "network_devices": deepcopy(registry.get_network_devices()),
        "ha_devices": deepcopy(registry.get_ha_devices()),
        "matrix_devices": [matrix.as_dict() for matrix in registry.get_matrix_devices()],
        "links": {
            device_id: link.as_dict() if link else None
            for device_id, link in registry.get_device_links().items()
        },
    }
