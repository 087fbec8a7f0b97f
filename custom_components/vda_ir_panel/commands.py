"""Command messages accepted by the panel manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import voluptuous as vol

from .const import LEARNING_TIMEOUT_SECONDS, PORT_TYPES, TRANSPORTS


@dataclass(frozen=True)
class RouteMatrix:
    matrix_id: str
    input: int
    output: int


@dataclass(frozen=True)
class QueryMatrix:
    matrix_id: str
    output: int | None = None


@dataclass(frozen=True)
class SaveMatrixPorts:
    matrix_id: str
    snapshot: dict[str, Any] = field(default_factory=dict)
    transport: str | None = None


@dataclass(frozen=True)
class LinkDevice:
    """Place a device on a matrix port, or unlink it when ``port_type`` is None."""

    device_id: str
    matrix_id: str | None = None
    port_type: str | None = None
    port_index: str | None = None


@dataclass(frozen=True)
class DeleteMatrix:
    matrix_id: str


@dataclass(frozen=True)
class DeleteDevice:
    device_id: str


@dataclass(frozen=True)
class StartLearning:
    board_id: str
    profile_id: str
    command_name: str
    port: int
    timeout: int = LEARNING_TIMEOUT_SECONDS


@dataclass(frozen=True)
class CancelLearning:
    profile_id: str


@dataclass(frozen=True)
class SendDeviceCommand:
    device_id: str
    payload: str
    line_ending: str = "none"
    transport: str | None = None


@dataclass(frozen=True)
class RefreshRegistry:
    pass


Command = (
    RouteMatrix
    | QueryMatrix
    | SaveMatrixPorts
    | LinkDevice
    | DeleteMatrix
    | DeleteDevice
    | StartLearning
    | CancelLearning
    | SendDeviceCommand
    | RefreshRegistry
)

_PORT_INDEX = vol.All(vol.Coerce(int), vol.Range(min=1))

_PORT_ENTRY = vol.Schema(
    {
        vol.Required("index"): _PORT_INDEX,
        vol.Optional("name"): vol.Any(None, str),
        vol.Optional("device_id", default=None): vol.Any(None, str),
        vol.Optional("enabled"): vol.Boolean(),
    },
    extra=vol.ALLOW_EXTRA,
)

_SCHEMAS: dict[str, tuple[vol.Schema, type]] = {
    "route_matrix": (
        vol.Schema(
            {
                vol.Required("matrix_id"): str,
                vol.Required("input"): _PORT_INDEX,
                vol.Required("output"): _PORT_INDEX,
            }
        ),
        RouteMatrix,
    ),
    "query_matrix": (
        vol.Schema(
            {
                vol.Required("matrix_id"): str,
                vol.Optional("output"): _PORT_INDEX,
            }
        ),
        QueryMatrix,
    ),
    "save_matrix_ports": (
        vol.Schema(
            {
                vol.Required("matrix_id"): str,
                vol.Optional("transport"): vol.In(TRANSPORTS),
                vol.Required("snapshot"): vol.Schema(
                    {
                        vol.Optional("inputs"): [_PORT_ENTRY],
                        vol.Optional("outputs"): [_PORT_ENTRY],
                        vol.Optional("routing_template"): vol.Any(None, str),
                        vol.Optional("query_template"): vol.Any(None, str),
                    }
                ),
            }
        ),
        SaveMatrixPorts,
    ),
    "link_device": (
        vol.Schema(
            {
                vol.Required("device_id"): str,
                vol.Optional("matrix_id"): vol.Any(None, str),
                vol.Optional("port_type"): vol.Any(None, vol.In(PORT_TYPES)),
                vol.Optional("port_index"): vol.Any(None, vol.Coerce(str)),
            }
        ),
        LinkDevice,
    ),
    "delete_matrix": (vol.Schema({vol.Required("matrix_id"): str}), DeleteMatrix),
    "delete_device": (vol.Schema({vol.Required("device_id"): str}), DeleteDevice),
    "start_learning": (
        vol.Schema(
            {
                vol.Required("board_id"): str,
                vol.Required("profile_id"): str,
                vol.Required("command_name"): vol.All(str, vol.Length(min=1)),
                vol.Required("port"): vol.Coerce(int),
                vol.Optional("timeout", default=LEARNING_TIMEOUT_SECONDS): vol.All(
                    vol.Coerce(int), vol.Range(min=1)
                ),
            }
        ),
        StartLearning,
    ),
    "cancel_learning": (vol.Schema({vol.Required("profile_id"): str}), CancelLearning),
    "send_device_command": (
        vol.Schema(
            {
                vol.Required("device_id"): str,
                vol.Required("payload"): str,
                vol.Optional("line_ending", default="none"): str,
                vol.Optional("transport"): vol.In(TRANSPORTS),
            }
        ),
        SendDeviceCommand,
    ),
    "refresh": (vol.Schema({}), RefreshRegistry),
}


def parse_command(payload: dict[str, Any]) -> Command:
    """Validate a JSON command body and return the matching message.

    Raises ``ValueError`` for an unknown command name or an invalid body.
    """

    if not isinstance(payload, dict):
        raise ValueError("Command payload must be an object")
    name = payload.get("command")
    if name not in _SCHEMAS:
        raise ValueError(f"Unsupported command {name!r}")
    schema, message_type = _SCHEMAS[name]
    body = {key: value for key, value in payload.items() if key != "command"}
    try:
        data = schema(body)
    except vol.Invalid as err:
        raise ValueError(f"Invalid {name} command: {err}") from err
    return message_type(**data)
