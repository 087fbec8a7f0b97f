"""Keep matrix port tables and device links in step with each other."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .const import PORT_TYPE_OUTPUT, PORT_TYPES
from .errors import BackendUnavailableError, InvalidPortCapabilityError, LinkConflictError
from .models import DeviceLink, MatrixDevice
from .ports import Port, PortTable, normalize_index

if TYPE_CHECKING:
    from .registry import DeviceRegistry

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkOperation:
    device_id: str
    link: DeviceLink | None

    @property
    def kind(self) -> str:
        return "clear" if self.link is None else "update"

    def as_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "kind": self.kind,
            "link": self.link.as_dict() if self.link is not None else None,
        }


@dataclass
class ReconcilePlan:
    """Operations needed to bring the backend in line with an edited matrix."""

    matrix: MatrixDevice
    persist_matrix: bool = False
    link_operations: list[LinkOperation] = field(default_factory=list)
    releases: dict[str, list[str]] = field(default_factory=dict)

    @property
    def updates(self) -> list[LinkOperation]:
        return [op for op in self.link_operations if op.link is not None]

    @property
    def clears(self) -> list[LinkOperation]:
        return [op for op in self.link_operations if op.link is None]

    @property
    def is_empty(self) -> bool:
        return not self.persist_matrix and not self.link_operations

    def as_dict(self) -> dict[str, Any]:
        return {
            "matrix_device_id": self.matrix.id,
            "persist_matrix": self.persist_matrix,
            "link_operations": [op.as_dict() for op in self.link_operations],
            "releases": {matrix_id: list(device_ids) for matrix_id, device_ids in self.releases.items()},
        }


@dataclass
class ReconcileResult:
    """Per-operation outcome of applying a plan."""

    matrix_device_id: str
    matrix_saved: bool = False
    matrix_error: str | None = None
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.matrix_error is None and not self.failed and not self.skipped

    def as_dict(self) -> dict[str, Any]:
        return {
            "matrix_device_id": self.matrix_device_id,
            "ok": self.ok,
            "matrix_saved": self.matrix_saved,
            "matrix_error": self.matrix_error,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "skipped": list(self.skipped),
        }


def _linked_to(current_links: Mapping[str, DeviceLink | None], matrix_id: str) -> set[str]:
    return {
        device_id
        for device_id, link in current_links.items()
        if link is not None and link.matrix_device_id == matrix_id
    }


def _copy_matrix(matrix: MatrixDevice) -> MatrixDevice:
    return MatrixDevice(
        id=matrix.id,
        transport=matrix.transport,
        name=matrix.name,
        routing_template=matrix.routing_template,
        query_template=matrix.query_template,
        line_ending=matrix.line_ending,
        inputs=matrix.inputs.copy(),
        outputs=matrix.outputs.copy(),
    )


class TopologyReconciler:
    """Diff submitted matrix edits against current links and apply the result."""

    def __init__(self, registry: DeviceRegistry) -> None:
        self._registry = registry

    # Planning ----------------------------------------------------------------------

    def plan(
        self,
        matrix: MatrixDevice,
        snapshot: Mapping[str, Any],
        current_links: Mapping[str, DeviceLink | None],
    ) -> ReconcilePlan:
        """Compute the persist and link operations for a submitted edit.

        ``current_links`` must be captured before any operation is issued;
        every device it links to ``matrix`` that the snapshot no longer places
        on a port gets a clear operation. Validation failures raise before a
        single operation exists. Devices currently linked to another matrix are
        listed in ``releases`` so that matrix drops them before this one is saved.
        """

        previous = _linked_to(current_links, matrix.id)
        updated = self._apply_snapshot(matrix, snapshot)

        desired: dict[str, DeviceLink] = {}
        for port_type in PORT_TYPES:
            for port in updated.table(port_type):
                if port.device_id is not None:
                    desired[port.device_id] = updated.link_for(port_type, port.index)

        operations: list[LinkOperation] = []
        for device_id, link in desired.items():
            if current_links.get(device_id) != link:
                operations.append(LinkOperation(device_id, link))
        for device_id in sorted(previous - desired.keys()):
            operations.append(LinkOperation(device_id, None))

        releases: dict[str, list[str]] = {}
        for operation in operations:
            link = current_links.get(operation.device_id)
            if operation.link is not None and link is not None and link.matrix_device_id != matrix.id:
                releases.setdefault(link.matrix_device_id, []).append(operation.device_id)

        plan = ReconcilePlan(
            matrix=updated,
            persist_matrix=updated.persist_payload() != matrix.persist_payload(),
            link_operations=operations,
            releases=releases,
        )
        _LOGGER.debug(
            "Planned matrix %s reconcile: persist=%s updates=%s clears=%s releases=%s",
            matrix.id,
            plan.persist_matrix,
            [op.device_id for op in plan.updates],
            [op.device_id for op in plan.clears],
            plan.releases,
        )
        return plan

    def plan_link(
        self,
        matrix: MatrixDevice,
        device_id: str,
        port_type: str,
        port_index: Any,
        current_links: Mapping[str, DeviceLink | None],
    ) -> ReconcilePlan:
        """Place a single device on one matrix port."""

        if device_id == matrix.id:
            raise LinkConflictError(f"Matrix {matrix.id} cannot be linked to itself")
        index = normalize_index(port_index)
        table = matrix.table(port_type)
        port = table.get(index)
        if port is None:
            raise ValueError(f"Matrix {matrix.id} has no {port_type} {index}")
        _check_capability(matrix, port_type, port, device_id)

        target = matrix.link_for(port_type, index)
        if port.device_id not in (None, device_id):
            raise LinkConflictError(f"{port_type.capitalize()} {index} of {matrix.id} is already assigned to {port.device_id}")
        for other_id, link in current_links.items():
            if other_id != device_id and link == target:
                raise LinkConflictError(f"{port_type.capitalize()} {index} of {matrix.id} is already linked to {other_id}")

        updated = _copy_matrix(matrix)
        for other_type in PORT_TYPES:
            held = updated.table(other_type).port_for(device_id)
            if held is not None:
                updated.table(other_type).upsert(held, device_id=None)
        updated.table(port_type).upsert(index, device_id=device_id)

        operations = []
        if current_links.get(device_id) != target:
            operations.append(LinkOperation(device_id, target))
        return ReconcilePlan(
            matrix=updated,
            persist_matrix=updated.persist_payload() != matrix.persist_payload(),
            link_operations=operations,
        )

    def plan_unlink(
        self,
        matrix: MatrixDevice,
        device_id: str,
        current_links: Mapping[str, DeviceLink | None],
    ) -> ReconcilePlan:
        """Take a device off every port of a matrix and clear its link."""

        updated = _copy_matrix(matrix)
        for port_type in PORT_TYPES:
            held = updated.table(port_type).port_for(device_id)
            if held is not None:
                updated.table(port_type).upsert(held, device_id=None)

        operations = []
        link = current_links.get(device_id)
        if link is not None and link.matrix_device_id == matrix.id:
            operations.append(LinkOperation(device_id, None))
        return ReconcilePlan(
            matrix=updated,
            persist_matrix=updated.persist_payload() != matrix.persist_payload(),
            link_operations=operations,
        )

    @staticmethod
    def plan_matrix_removal(
        matrix_id: str,
        current_links: Mapping[str, DeviceLink | None],
    ) -> list[LinkOperation]:
        """Clear operations for every device linked to a matrix being deleted."""
        return [LinkOperation(device_id, None) for device_id in sorted(_linked_to(current_links, matrix_id))]

    @staticmethod
    def plan_device_removal(device_id: str, matrices: Iterable[MatrixDevice]) -> list[MatrixDevice]:
        """Return copies of the matrices that referenced a deleted device, with it removed."""

        changed: list[MatrixDevice] = []
        for matrix in matrices:
            if matrix.inputs.port_for(device_id) is None and matrix.outputs.port_for(device_id) is None:
                continue
            updated = _copy_matrix(matrix)
            for port_type in PORT_TYPES:
                held = updated.table(port_type).port_for(device_id)
                if held is not None:
                    updated.table(port_type).upsert(held, device_id=None)
            changed.append(updated)
        return changed

    def _apply_snapshot(self, matrix: MatrixDevice, snapshot: Mapping[str, Any]) -> MatrixDevice:
        seen_devices: dict[str, tuple[str, int]] = {}
        tables: dict[str, PortTable] = {}

        for port_type in PORT_TYPES:
            key = f"{port_type}s"
            records = snapshot.get(key)
            if records is None:
                records = snapshot.get(f"matrix_{key}")
            current = matrix.table(port_type)
            if records is None:
                table = current.copy()
            else:
                table = PortTable(port_type)
                seen_indices: set[int] = set()
                for record in records:
                    if not isinstance(record, Mapping):
                        raise ValueError(f"Invalid {port_type} entry: {record!r}")
                    index = normalize_index(record.get("index"))
                    if index in seen_indices:
                        raise ValueError(f"Duplicate {port_type} index {index}")
                    seen_indices.add(index)
                    existing = current.get(index)
                    if "name" in record:
                        name = record["name"] or ""
                    else:
                        name = existing.name if existing else ""
                    enabled = record.get("enabled")
                    if enabled is None:
                        enabled = existing.enabled if existing else True
                    # capability is backend-reported; a submitted input_only is ignored
                    port = table.upsert(
                        index,
                        name=name,
                        enabled=enabled,
                        input_only=existing.input_only if existing else False,
                    )
                    device_id = record.get("device_id")
                    device_id = str(device_id).strip() if device_id else None
                    if not device_id:
                        continue
                    _check_capability(matrix, port_type, port, device_id)
                    port.device_id = device_id

            for port in table:
                if port.device_id is None:
                    continue
                if port.device_id == matrix.id:
                    raise LinkConflictError(f"Matrix {matrix.id} cannot be linked to itself")
                if port.device_id in seen_devices:
                    other_type, other_index = seen_devices[port.device_id]
                    raise LinkConflictError(
                        f"Device {port.device_id} is assigned to both {other_type} {other_index} "
                        f"and {port_type} {port.index}"
                    )
                seen_devices[port.device_id] = (port_type, port.index)
            tables[port_type] = table

        routing_template = snapshot.get("routing_template")
        query_template = snapshot.get("query_template")
        updated = _copy_matrix(matrix)
        updated.inputs = tables["input"]
        updated.outputs = tables["output"]
        if routing_template is not None:
            updated.routing_template = str(routing_template)
        if query_template is not None:
            updated.query_template = str(query_template)
        return updated

    # Applying ----------------------------------------------------------------------

    async def async_apply(self, plan: ReconcilePlan) -> ReconcileResult:
        """Issue the plan's operations and record the outcome of each one."""

        result = ReconcileResult(matrix_device_id=plan.matrix.id)
        if plan.is_empty:
            return result

        for matrix_id, device_ids in plan.releases.items():
            try:
                await self._async_release(matrix_id, device_ids)
            except BackendUnavailableError as err:
                _LOGGER.warning("Failed to release %s from matrix %s: %s", device_ids, matrix_id, err)
                result.matrix_error = f"Could not release {', '.join(device_ids)} from {matrix_id}: {err}"
                result.skipped = [op.device_id for op in plan.link_operations]
                return result

        if plan.persist_matrix:
            try:
                await self._registry.async_put_matrix_device(plan.matrix)
            except BackendUnavailableError as err:
                _LOGGER.warning("Failed to save matrix %s: %s", plan.matrix.id, err)
                result.matrix_error = str(err)
                result.skipped = [op.device_id for op in plan.link_operations]
                return result
            result.matrix_saved = True

        for operation in plan.link_operations:
            try:
                await self._registry.async_update_device_link(operation.device_id, operation.link)
            except BackendUnavailableError as err:
                _LOGGER.warning(
                    "Failed to %s matrix link for %s: %s",
                    operation.kind,
                    operation.device_id,
                    err,
                )
                result.failed[operation.device_id] = str(err)
                continue
            result.succeeded.append(operation.device_id)

        try:
            await self._registry.async_refresh()
        except BackendUnavailableError as err:
            _LOGGER.warning("Registry refresh after reconcile of %s failed: %s", plan.matrix.id, err)

        return result

    async def _async_release(self, matrix_id: str, device_ids: list[str]) -> None:
        matrix = await self._registry.async_get_matrix_device(matrix_id)
        updated = _copy_matrix(matrix)
        for device_id in device_ids:
            for port_type in PORT_TYPES:
                held = updated.table(port_type).port_for(device_id)
                if held is not None:
                    updated.table(port_type).upsert(held, device_id=None)
        if updated.persist_payload() != matrix.persist_payload():
            _LOGGER.debug("Releasing %s from matrix %s", device_ids, matrix_id)
            await self._registry.async_put_matrix_device(updated)

    async def async_reconcile(
        self,
        matrix_id: str,
        snapshot: Mapping[str, Any],
        *,
        transport: str | None = None,
    ) -> tuple[ReconcilePlan, ReconcileResult]:
        """Fetch the matrix, plan against the current links and apply."""

        matrix = await self._registry.async_get_matrix_device(matrix_id, transport=transport)
        current_links = self._registry.get_device_links()
        plan = self.plan(matrix, snapshot, current_links)
        return plan, await self.async_apply(plan)


def _check_capability(matrix: MatrixDevice, port_type: str, port: Port, device_id: str | None) -> None:
    if port_type == PORT_TYPE_OUTPUT and port.input_only and device_id:
        raise InvalidPortCapabilityError(f"Port {port.index} of {matrix.id} is input-only and cannot be used as an output")
