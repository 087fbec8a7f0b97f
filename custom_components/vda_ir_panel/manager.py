"""Runtime manager for matrix routing, topology edits and IR learning."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from homeassistant.core import callback

from .commands import (
    CancelLearning,
    Command,
    DeleteDevice,
    DeleteMatrix,
    LinkDevice,
    QueryMatrix,
    RefreshRegistry,
    RouteMatrix,
    SaveMatrixPorts,
    SendDeviceCommand,
    StartLearning,
)
from .const import PORT_TYPE_INPUT, PORT_TYPE_OUTPUT
from .errors import BackendUnavailableError, PortDisabledError, VdaIrPanelError
from .learning import LearningController, LearningSession
from .models import MatrixDevice
from .reconciler import ReconcileResult, TopologyReconciler
from .registry import DeviceRegistry
from .template import render, requires_output

_LOGGER = logging.getLogger(__name__)

StateListener = Callable[[], None]


@dataclass
class AppState:
    """Serializable state owned by the manager."""

    learning: dict[str, dict[str, Any]] = field(default_factory=dict)
    last_learning_profile: str | None = None
    reconcile_results: dict[str, dict[str, Any]] = field(default_factory=dict)
    last_command_result: dict[str, Any] | None = None
    updated_at: float = field(default_factory=time.time)

    def as_dict(self) -> dict[str, Any]:
        return {
            "learning": {profile_id: dict(session) for profile_id, session in self.learning.items()},
            "last_learning_profile": self.last_learning_profile,
            "reconcile_results": {matrix_id: dict(result) for matrix_id, result in self.reconcile_results.items()},
            "last_command_result": dict(self.last_command_result) if self.last_command_result else None,
            "updated_at": self.updated_at,
        }


class VdaIrPanelManager:
    """Own the application state and dispatch panel commands."""

    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        learning: LearningController | None = None,
    ) -> None:
        self._registry = registry
        self._reconciler = TopologyReconciler(registry)
        self._learning = learning or LearningController(registry)
        self._state = AppState()
        self._listeners: list[StateListener] = []
        self._remove_learning_listener = self._learning.add_listener(self._handle_learning_update)

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def learning(self) -> LearningController:
        return self._learning

    @callback
    def async_add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    @callback
    def async_remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @callback
    def _async_notify(self) -> None:
        self._state.updated_at = time.time()
        for listener in list(self._listeners):
            listener()

    @callback
    def _handle_learning_update(self, session: LearningSession) -> None:
        self._state.learning[session.profile_id] = session.as_dict()
        self._state.last_learning_profile = session.profile_id
        self._async_notify()

    async def async_shutdown(self) -> None:
        self._remove_learning_listener()
        await self._learning.async_shutdown()

    async def async_dispatch(self, command: Command) -> dict[str, Any]:
        """Run one command message and return its JSON-ready result."""

        _LOGGER.debug("Dispatching %s", command)
        match command:
            case RouteMatrix(matrix_id=matrix_id, input=input_index, output=output_index):
                return await self.async_route_matrix(matrix_id, input_index, output_index)
            case QueryMatrix(matrix_id=matrix_id, output=output_index):
                return await self.async_query_matrix(matrix_id, output_index)
            case SaveMatrixPorts(matrix_id=matrix_id, snapshot=snapshot, transport=transport):
                result = await self.async_save_matrix_ports(matrix_id, snapshot, transport=transport)
                return result.as_dict()
            case LinkDevice(device_id=device_id, matrix_id=matrix_id, port_type=port_type, port_index=port_index):
                result = await self.async_link_device(device_id, matrix_id, port_type, port_index)
                return result.as_dict()
            case DeleteMatrix(matrix_id=matrix_id):
                return await self.async_delete_matrix(matrix_id)
            case DeleteDevice(device_id=device_id):
                return await self.async_delete_device(device_id)
            case StartLearning(
                board_id=board_id,
                profile_id=profile_id,
                command_name=learn_command,
                port=port,
                timeout=timeout,
            ):
                session = await self._learning.async_start(board_id, profile_id, learn_command, port, timeout)
                return session.as_dict()
            case CancelLearning(profile_id=profile_id):
                session = self._learning.cancel(profile_id)
                return session.as_dict() if session else {"profile_id": profile_id, "status": "idle"}
            case SendDeviceCommand(device_id=device_id, payload=payload, line_ending=line_ending, transport=transport):
                return await self.async_send_command(device_id, payload, line_ending, transport=transport)
            case RefreshRegistry():
                await self._registry.async_refresh()
                return {"status": "ok"}
            case _:
                raise VdaIrPanelError(f"Unsupported command {command!r}")

    # Routing -----------------------------------------------------------------------

    async def _async_matrix(self, matrix_id: str) -> MatrixDevice:
        return await self._registry.async_get_matrix_device(matrix_id)

    async def async_route_matrix(self, matrix_id: str, input_index: int, output_index: int) -> dict[str, Any]:
        """Switch ``output_index`` of a matrix to ``input_index``."""

        matrix = await self._async_matrix(matrix_id)
        for port_type, index in ((PORT_TYPE_INPUT, input_index), (PORT_TYPE_OUTPUT, output_index)):
            port = matrix.table(port_type).get(index)
            if port is None:
                raise ValueError(f"Matrix {matrix_id} has no {port_type} {index}")
            if not port.enabled:
                raise PortDisabledError(f"{port.name} on {matrix_id} is disabled")
        if not matrix.routing_template:
            raise VdaIrPanelError(f"Matrix {matrix_id} has no routing template")

        payload = render(matrix.routing_template, {"input": str(input_index), "output": str(output_index)})
        _LOGGER.debug("Routing %s input %s to output %s: %s", matrix_id, input_index, output_index, payload)
        result = await self._registry.async_send_device_command(
            matrix.id,
            payload,
            matrix.line_ending,
            transport=matrix.transport,
        )
        return self._record_command_result(matrix.id, payload, result)

    async def async_query_matrix(self, matrix_id: str, output_index: int | None = None) -> dict[str, Any]:
        """Send the matrix query template, once per enabled output when it needs one."""

        matrix = await self._async_matrix(matrix_id)
        if not matrix.query_template:
            raise VdaIrPanelError(f"Matrix {matrix_id} has no query template")

        if not requires_output(matrix.query_template):
            payload = render(matrix.query_template, {})
            result = await self._registry.async_send_device_command(
                matrix.id, payload, matrix.line_ending, transport=matrix.transport
            )
            return self._record_command_result(matrix.id, payload, result)

        if output_index is not None:
            port = matrix.outputs.get(output_index)
            if port is None:
                raise ValueError(f"Matrix {matrix_id} has no output {output_index}")
            if not port.enabled:
                raise PortDisabledError(f"{port.name} on {matrix_id} is disabled")
            outputs = [port]
        else:
            outputs = [port for port in matrix.outputs if port.enabled]

        responses: dict[str, Any] = {}
        for port in outputs:
            payload = render(matrix.query_template, {"output": str(port.index)})
            responses[str(port.index)] = await self._registry.async_send_device_command(
                matrix.id, payload, matrix.line_ending, transport=matrix.transport
            )
        result = {
            "success": all(item.get("success") for item in responses.values()),
            "outputs": responses,
        }
        self._state.last_command_result = {"device_id": matrix.id, **result}
        self._async_notify()
        return result

    async def async_send_command(
        self,
        device_id: str,
        payload: str,
        line_ending: str | None,
        *,
        transport: str | None = None,
    ) -> dict[str, Any]:
        transport = transport or self._registry.get_matrix_transport(device_id) or "serial"
        result = await self._registry.async_send_device_command(device_id, payload, line_ending, transport=transport)
        return self._record_command_result(device_id, payload, result)

    def _record_command_result(self, device_id: str, payload: str, result: dict[str, Any]) -> dict[str, Any]:
        if not result.get("success"):
            _LOGGER.warning("Command to %s failed: %s", device_id, result.get("error"))
        self._state.last_command_result = {"device_id": device_id, "payload": payload, **result}
        self._async_notify()
        return result

    # Topology ----------------------------------------------------------------------

    async def async_save_matrix_ports(
        self,
        matrix_id: str,
        snapshot: dict[str, Any],
        *,
        transport: str | None = None,
    ) -> ReconcileResult:
        _plan, result = await self._reconciler.async_reconcile(matrix_id, snapshot, transport=transport)
        return self._record_reconcile(result)

    async def async_link_device(
        self,
        device_id: str,
        matrix_id: str | None,
        port_type: str | None,
        port_index: str | None,
    ) -> ReconcileResult:
        """Link a device to one matrix port, or unlink it when no port is given."""

        current_links = self._registry.get_device_links()
        previous = current_links.get(device_id)

        if previous is not None and previous.matrix_device_id != matrix_id:
            old_matrix = await self._async_matrix(previous.matrix_device_id)
            release = self._reconciler.plan_unlink(old_matrix, device_id, current_links)
            released = await self._reconciler.async_apply(release)
            if not released.ok or not matrix_id or not port_type:
                return self._record_reconcile(released)
            current_links = self._registry.get_device_links()

        if not matrix_id or not port_type or not port_index:
            if previous is None:
                return ReconcileResult(matrix_device_id=matrix_id or "")
            matrix = await self._async_matrix(previous.matrix_device_id)
            plan = self._reconciler.plan_unlink(matrix, device_id, current_links)
        else:
            matrix = await self._async_matrix(matrix_id)
            plan = self._reconciler.plan_link(matrix, device_id, port_type, port_index, current_links)
        return self._record_reconcile(await self._reconciler.async_apply(plan))

    async def async_delete_matrix(self, matrix_id: str) -> dict[str, Any]:
        """Delete a matrix and clear the link of every device pointing at it."""

        transport = self._registry.get_matrix_transport(matrix_id)
        if transport is None:
            transport = (await self._async_matrix(matrix_id)).transport
        clears = self._reconciler.plan_matrix_removal(matrix_id, self._registry.get_device_links())
        await self._registry.async_delete_matrix_device(matrix_id, transport=transport)

        result = ReconcileResult(matrix_device_id=matrix_id, matrix_saved=True)
        for operation in clears:
            try:
                await self._registry.async_update_device_link(operation.device_id, None)
            except BackendUnavailableError as err:
                result.failed[operation.device_id] = str(err)
                continue
            result.succeeded.append(operation.device_id)
        await self._async_refresh_quietly()
        self._state.reconcile_results.pop(matrix_id, None)
        self._async_notify()
        return result.as_dict()

    async def async_delete_device(self, device_id: str) -> dict[str, Any]:
        """Delete a controlled device and drop it from every matrix port."""

        matrices = self._registry.get_matrix_devices()
        changed = self._reconciler.plan_device_removal(device_id, matrices)
        await self._registry.async_delete_device(device_id)

        saved: list[str] = []
        failed: dict[str, str] = {}
        for matrix in changed:
            try:
                await self._registry.async_put_matrix_device(matrix)
            except BackendUnavailableError as err:
                failed[matrix.id] = str(err)
                continue
            saved.append(matrix.id)
        await self._async_refresh_quietly()
        return {"device_id": device_id, "matrices_updated": saved, "failed": failed, "ok": not failed}

    def _record_reconcile(self, result: ReconcileResult) -> ReconcileResult:
        if result.matrix_device_id:
            self._state.reconcile_results[result.matrix_device_id] = result.as_dict()
        self._async_notify()
        return result

    async def _async_refresh_quietly(self) -> None:
        try:
            await self._registry.async_refresh()
        except BackendUnavailableError as err:
            _LOGGER.warning("Registry refresh failed: %s", err)
