"""Matrix device and device link records shared by the panel core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .const import (
    DEFAULT_LINE_ENDING,
    PORT_TYPE_INPUT,
    PORT_TYPE_OUTPUT,
    PORT_TYPES,
    TRANSPORT_NETWORK,
    TRANSPORT_SERIAL,
    TRANSPORTS,
)
from .ports import PortTable


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class DeviceLink:
    """Back-reference a controlled device holds to one matrix port."""

    matrix_device_id: str
    matrix_device_transport: str
    port_type: str
    port_index: str

    def __post_init__(self) -> None:
        if self.port_type not in PORT_TYPES:
            raise ValueError(f"Unknown port type {self.port_type}")
        if self.matrix_device_transport not in TRANSPORTS:
            raise ValueError(f"Unknown matrix transport {self.matrix_device_transport}")
        if not self.matrix_device_id or not self.port_index:
            raise ValueError("A link needs both a matrix id and a port index")

    @classmethod
    def from_record(cls, record: dict[str, Any] | None, *, default_port_type: str | None = None) -> DeviceLink | None:
        """Read the ``matrix_*`` fields of a backend device record.

        Returns ``None`` when the record carries no usable link; a matrix id
        without a port (or the reverse) counts as no link.
        """

        if not isinstance(record, dict):
            return None
        matrix_id = _clean(record.get("matrix_device_id"))
        port_index = _clean(record.get("matrix_port"))
        if matrix_id is None or port_index is None:
            return None
        port_type = _clean(record.get("matrix_port_type")) or default_port_type or PORT_TYPE_INPUT
        transport = _clean(record.get("matrix_device_type")) or TRANSPORT_SERIAL
        try:
            return cls(
                matrix_device_id=matrix_id,
                matrix_device_transport=transport,
                port_type=port_type,
                port_index=port_index,
            )
        except ValueError:
            return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "matrix_device_id": self.matrix_device_id,
            "matrix_device_transport": self.matrix_device_transport,
            "port_type": self.port_type,
            "port_index": self.port_index,
        }


@dataclass
class MatrixDevice:
    """A serial or network routing switch with numbered inputs and outputs."""

    id: str
    transport: str
    name: str = ""
    routing_template: str = ""
    query_template: str = ""
    line_ending: str = DEFAULT_LINE_ENDING
    inputs: PortTable = field(default_factory=lambda: PortTable.with_defaults(PORT_TYPE_INPUT))
    outputs: PortTable = field(default_factory=lambda: PortTable.with_defaults(PORT_TYPE_OUTPUT))

    @classmethod
    def from_record(cls, record: dict[str, Any], *, transport: str | None = None) -> MatrixDevice:
        device_id = _clean(record.get("device_id") or record.get("id"))
        if device_id is None:
            raise ValueError("Matrix record is missing device_id")
        resolved = transport or _clean(record.get("transport_type")) or TRANSPORT_SERIAL
        if resolved not in TRANSPORTS:
            resolved = TRANSPORT_NETWORK if resolved in {"tcp", "udp"} else TRANSPORT_SERIAL
        config = record.get("matrix_config") if isinstance(record.get("matrix_config"), dict) else {}
        return cls(
            id=device_id,
            transport=resolved,
            name=record.get("name") or device_id,
            routing_template=record.get("routing_template") or config.get("command_template") or "",
            query_template=record.get("query_template") or config.get("status_command") or "",
            line_ending=record.get("line_ending") or config.get("line_ending") or DEFAULT_LINE_ENDING,
            inputs=PortTable.from_records(
                PORT_TYPE_INPUT,
                record.get("matrix_inputs"),
                default_count=config.get("input_count"),
            ),
            outputs=PortTable.from_records(
                PORT_TYPE_OUTPUT,
                record.get("matrix_outputs"),
                default_count=config.get("output_count"),
            ),
        )

    def table(self, port_type: str) -> PortTable:
        if port_type == PORT_TYPE_INPUT:
            return self.inputs
        if port_type == PORT_TYPE_OUTPUT:
            return self.outputs
        raise ValueError(f"Unknown port type {port_type}")

    def link_for(self, port_type: str, index: int) -> DeviceLink:
        return DeviceLink(
            matrix_device_id=self.id,
            matrix_device_transport=self.transport,
            port_type=port_type,
            port_index=str(index),
        )

    def persist_payload(self) -> dict[str, Any]:
        """Return the body the backend expects when saving matrix I/O."""
        return {
            "matrix_inputs": self.inputs.as_records(),
            "matrix_outputs": self.outputs.as_records(),
            "routing_template": self.routing_template,
            "query_template": self.query_template,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.id,
            "transport": self.transport,
            "name": self.name,
            "line_ending": self.line_ending,
            **self.persist_payload(),
        }
