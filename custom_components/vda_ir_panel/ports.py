"""Port tables for the input and output sides of a routing matrix."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .const import DEFAULT_MATRIX_PORT_COUNT, PORT_TYPES

_LOGGER = logging.getLogger(__name__)

_UNSET: Any = object()


def normalize_index(value: Any) -> int:
    """Return a validated port index."""
    if isinstance(value, bool):
        raise ValueError("port index must be an integer")
    try:
        index = int(value)
    except (TypeError, ValueError):
        raise ValueError("port index must be an integer") from None
    if index < 1:
        raise ValueError("port index must be 1 or greater")
    return index


def _normalize_device_id(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _normalize_bool(value: Any, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    if value is None:
        return default
    return bool(value)


def default_port_name(port_type: str, index: int) -> str:
    return f"{port_type.capitalize()} {index}"


@dataclass
class Port:
    index: int
    name: str
    device_id: str | None = None
    enabled: bool = True
    input_only: bool = False

    def as_record(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "device_id": self.device_id,
            "enabled": self.enabled,
            "input_only": self.input_only,
        }


class PortTable:
    """Ordered, possibly sparse collection of ports for one side of a matrix.

    A device can sit on at most one port of a table: assigning it to a port
    clears it from whichever port held it before.
    """

    def __init__(self, port_type: str, ports: Iterable[Port] = ()) -> None:
        if port_type not in PORT_TYPES:
            raise ValueError(f"Unknown port type {port_type}")
        self._port_type = port_type
        self._ports: dict[int, Port] = {}
        for port in ports:
            self.upsert(
                port.index,
                name=port.name,
                device_id=port.device_id,
                enabled=port.enabled,
                input_only=port.input_only,
            )

    @classmethod
    def with_defaults(cls, port_type: str, count: int | None = None) -> PortTable:
        """Return a table populated with ports ``1..count``."""
        if not count or count < 1:
            count = DEFAULT_MATRIX_PORT_COUNT
        table = cls(port_type)
        for index in range(1, count + 1):
            table.upsert(index)
        return table

    @classmethod
    def from_records(
        cls,
        port_type: str,
        records: Iterable[dict[str, Any]] | None,
        *,
        default_count: int | None = None,
    ) -> PortTable:
        """Build a table from backend port records, falling back to defaults."""

        records = [record for record in records or [] if isinstance(record, dict)]
        if not records:
            return cls.with_defaults(port_type, default_count)

        table = cls(port_type)
        for position, record in enumerate(records, start=1):
            index = normalize_index(record.get("index", position))
            input_only = _normalize_bool(record.get("input_only"), default=False)
            if record.get("can_output") is False:
                input_only = True
            table.upsert(
                index,
                name=record.get("name") or "",
                device_id=record.get("device_id"),
                enabled=_normalize_bool(record.get("enabled"), default=True),
                input_only=input_only,
            )
        return table

    @property
    def port_type(self) -> str:
        return self._port_type

    def __iter__(self) -> Iterator[Port]:
        for index in sorted(self._ports):
            yield self._ports[index]

    def __len__(self) -> int:
        return len(self._ports)

    def __contains__(self, index: object) -> bool:
        return index in self._ports

    def get(self, index: Any) -> Port | None:
        try:
            return self._ports.get(normalize_index(index))
        except ValueError:
            return None

    def upsert(
        self,
        index: Any,
        *,
        name: Any = _UNSET,
        device_id: Any = _UNSET,
        enabled: Any = _UNSET,
        input_only: Any = _UNSET,
    ) -> Port:
        """Merge the given fields into the port at ``index``, creating it if needed."""

        index = normalize_index(index)
        port = self._ports.get(index)
        if port is None:
            port = Port(index=index, name=default_port_name(self._port_type, index))
            self._ports[index] = port

        if name is not _UNSET:
            port.name = str(name).strip() if name else default_port_name(self._port_type, index)
        if enabled is not _UNSET:
            port.enabled = _normalize_bool(enabled, default=True)
        if input_only is not _UNSET:
            port.input_only = _normalize_bool(input_only, default=False)
        if device_id is not _UNSET:
            device_id = _normalize_device_id(device_id)
            if device_id is not None:
                for other in self._ports.values():
                    if other is not port and other.device_id == device_id:
                        _LOGGER.debug(
                            "Moving device %s from %s %s to %s %s",
                            device_id,
                            self._port_type,
                            other.index,
                            self._port_type,
                            index,
                        )
                        other.device_id = None
            port.device_id = device_id
        return port

    def resolve_device_for(self, index: Any) -> str | None:
        port = self.get(index)
        return port.device_id if port is not None else None

    def port_for(self, device_id: str | None) -> int | None:
        if not device_id:
            return None
        for port in self._ports.values():
            if port.device_id == device_id:
                return port.index
        return None

    def assigned_devices(self) -> dict[str, int]:
        return {port.device_id: port.index for port in self._ports.values() if port.device_id}

    def as_records(self) -> list[dict[str, Any]]:
        return [port.as_record() for port in self]

    def copy(self) -> PortTable:
        return PortTable(
            self._port_type,
            [
                Port(
                    index=port.index,
                    name=port.name,
                    device_id=port.device_id,
                    enabled=port.enabled,
                    input_only=port.input_only,
                )
                for port in self
            ],
        )
