"""Tests for the backend registry client."""

from unittest.mock import MagicMock

import aiohttp
import pytest

from custom_components.vda_ir_panel.errors import BackendUnavailableError
from custom_components.vda_ir_panel.models import DeviceLink
from custom_components.vda_ir_panel.registry import DeviceRegistry, serialize_registry_snapshot

BASE = "/api/vda_ir_control"


class FakeResponse:
    """Minimal async context manager mimicking an aiohttp response."""

    def __init__(self, status, body):
        self.status = status
        self.reason = "Error" if status >= 400 else "OK"
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        return self._body


class FakeSession:
    """Route requests by method and path and record what was sent."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        path = url.removeprefix("http://ha.local")
        self.calls.append((method, path, json, headers))
        status, body = self.routes.get((method, path), (200, {}))
        return FakeResponse(status, body)


@pytest.fixture
def routes():
    """Return backend responses for a small installation."""
    return {
        ("GET", f"{BASE}/boards"): (200, {"boards": [{"board_id": "board1"}]}),
        ("GET", f"{BASE}/profiles"): (
            200,
            {"profiles": [{"profile_id": "profile1", "name": "LG TV", "learned_commands": ["power"]}]},
        ),
        ("GET", f"{BASE}/devices"): (
            200,
            {
                "devices": [
                    {
                        "device_id": "tv1",
                        "matrix_device_id": "matrix1",
                        "matrix_device_type": "serial",
                        "matrix_port_type": "output",
                        "matrix_port": "1",
                    },
                    {"device_id": "cable"},
                ]
            },
        ),
        ("GET", f"{BASE}/serial_devices"): (
            200,
            {
                "devices": [
                    {"device_id": "matrix1", "device_type": "hdmi_matrix", "name": "Matrix"},
                    {"device_id": "avr", "device_type": "receiver"},
                ]
            },
        ),
        ("GET", f"{BASE}/network_devices"): (200, {"devices": []}),
        ("GET", f"{BASE}/ha_devices"): (
            200,
            {"devices": [{"device_id": "roku", "matrix_device_id": "matrix1", "matrix_port": "3"}]},
        ),
        ("GET", f"{BASE}/serial_devices/matrix1"): (
            200,
            {
                "device_id": "matrix1",
                "device_type": "hdmi_matrix",
                "matrix_inputs": [{"index": 1, "name": "Input 1", "device_id": "avr"}],
                "matrix_outputs": [{"index": 1, "name": "Living Room", "device_id": "tv1"}],
            },
        ),
    }


@pytest.fixture
def session(routes):
    return FakeSession(routes)


@pytest.fixture
async def registry(session):
    """Return a registry loaded from the fake backend."""
    registry = DeviceRegistry(session, "http://ha.local/", "token")
    await registry.async_refresh()
    return registry


class TestRefresh:
    """Tests for loading the cache."""

    async def test_loads_sections(self, registry):
        """Test every section is loaded and matrix detail is merged in."""
        assert registry.get_boards() == [{"board_id": "board1"}]
        matrices = registry.get_matrix_devices()
        assert [matrix.id for matrix in matrices] == ["matrix1"]
        assert matrices[0].outputs.get(1).name == "Living Room"
        assert matrices[0].name == "Matrix"

    async def test_sends_bearer_token(self, registry, session):
        """Test the access token is sent with each request."""
        _method, _path, _json, headers = session.calls[0]
        assert headers["Authorization"] == "Bearer token"

    async def test_notifies_listeners(self, registry):
        """Test listeners run after a refresh."""
        listener = MagicMock()
        registry.async_add_listener(listener)
        await registry.async_refresh()
        listener.assert_called_once()


class TestLinks:
    """Tests for link derivation and updates."""

    async def test_device_links(self, registry):
        """Test IR, HA and serial links come from their own sources."""
        links = registry.get_device_links()

        assert links["tv1"] == DeviceLink("matrix1", "serial", "output", "1")
        assert links["cable"] is None
        assert links["roku"] == DeviceLink("matrix1", "serial", "input", "3")
        assert links["avr"] == DeviceLink("matrix1", "serial", "input", "1")
        assert "matrix1" not in links

    async def test_device_kinds(self, registry):
        """Test devices are classified by where their link lives."""
        assert registry.get_device_kind("roku") == "ha"
        assert registry.get_device_kind("avr") == "serial"
        assert registry.get_device_kind("tv1") == "ir"
        assert registry.get_device_kind("nothing") is None

    async def test_ir_link_uses_service(self, registry, session):
        """Test IR device links are written through the update_device service."""
        session.calls.clear()
        await registry.async_update_device_link("tv1", None)

        method, path, body, _headers = session.calls[0]
        assert (method, path) == ("POST", "/api/services/vda_ir_control/update_device")
        assert body["device_id"] == "tv1"
        assert body["matrix_device_id"] is None

    async def test_ha_link_cleared_with_empty_strings(self, registry, session):
        """Test HA device links are cleared with empty strings."""
        session.calls.clear()
        await registry.async_update_device_link("roku", None)

        method, path, body, _headers = session.calls[0]
        assert (method, path) == ("PUT", f"{BASE}/ha_devices/roku")
        assert body == {"matrix_device_id": "", "matrix_device_type": "", "matrix_port_type": "", "matrix_port": ""}

    async def test_serial_link_is_noop(self, registry, session):
        """Test serial device links need no backend call."""
        session.calls.clear()
        await registry.async_update_device_link("avr", DeviceLink("matrix1", "serial", "input", "2"))
        assert session.calls == []


class TestRequests:
    """Tests for request handling and errors."""

    async def test_http_error_raises(self, registry, session, routes):
        """Test an HTTP error status becomes BackendUnavailableError."""
        routes[("GET", f"{BASE}/serial_devices/missing")] = (404, {"error": "Device not found"})
        with pytest.raises(BackendUnavailableError, match="Device not found"):
            await registry.async_get_matrix_device("missing")

    async def test_client_error_raises(self, session):
        """Test a connection failure becomes BackendUnavailableError."""
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        registry = DeviceRegistry(session, "http://ha.local")
        with pytest.raises(BackendUnavailableError):
            await registry.async_refresh()

    async def test_send_literal_line_ending(self, registry, session):
        """Test a literal line ending is appended before sending."""
        session.routes[("POST", f"{BASE}/serial_devices/matrix1/send")] = (200, {"success": True, "response": "OK"})

        result = await registry.async_send_device_command("matrix1", "PWR", "#")

        _method, _path, body, _headers = session.calls[-1]
        assert body["payload"] == "PWR#"
        assert body["line_ending"] == "none"
        assert result == {"success": True, "response": "OK"}

    async def test_send_failure_reported(self, registry, session):
        """Test a backend-side send failure is returned, not raised."""
        session.routes[("POST", f"{BASE}/network_devices/proj/send")] = (500, {"error": "Device not connected"})

        result = await registry.async_send_device_command("proj", "PWR", "crlf", transport="network")

        assert result["success"] is False
        assert "Device not connected" in result["error"]

    async def test_learning_ports_filtered(self, registry, session):
        """Test only IR input ports are offered for learning."""
        session.routes[("GET", f"{BASE}/ports/board1")] = (
            200,
            {"ports": [{"port": 4, "mode": "ir_input"}, {"port": 5, "mode": "ir_output"}]},
        )
        assert await registry.async_get_learning_ports("board1") == [{"port": 4, "mode": "ir_input"}]

    async def test_record_learned_command_once(self, registry):
        """Test a learned command is added to the cached profile once."""
        registry.record_learned_command("profile1", "mute")
        registry.record_learned_command("profile1", "mute")
        assert registry.get_profile("profile1")["learned_commands"] == ["power", "mute"]

    async def test_snapshot(self, registry):
        """Test the API snapshot carries matrices and links."""
        snapshot = serialize_registry_snapshot(registry)
        assert snapshot["matrix_devices"][0]["device_id"] == "matrix1"
        assert snapshot["links"]["tv1"]["port_index"] == "1"
