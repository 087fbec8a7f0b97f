"""Shared pytest fixtures for VDA IR panel tests."""

from copy import deepcopy

import pytest

from custom_components.vda_ir_panel.errors import BackendUnavailableError
from custom_components.vda_ir_panel.learning import LearningController
from custom_components.vda_ir_panel.manager import VdaIrPanelManager
from custom_components.vda_ir_panel.models import DeviceLink, MatrixDevice
from custom_components.vda_ir_panel.reconciler import TopologyReconciler


class FakeRegistry:
    """In-memory stand-in for DeviceRegistry that records every backend call."""

    def __init__(self):
        self.matrices = {}
        self.links = {}
        self.learning_ports = {"board1": [{"port": 4, "mode": "ir_input"}]}
        self.learning_results = []
        self.poll_error = None
        self.fail_put = False
        self.fail_put_ids = set()
        self.fail_links = set()
        self.send_result = {"success": True, "response": "OK"}

        self.put_calls = []
        self.link_calls = []
        self.sent = []
        self.started = []
        self.learned = []
        self.deleted_matrices = []
        self.deleted_devices = []
        self.poll_count = 0
        self.refresh_count = 0
        self.profile_refresh_count = 0

    def add_matrix(self, matrix):
        self.matrices[matrix.id] = deepcopy(matrix)
        return matrix

    def link(self, device_id, matrix_id, port_type, port_index, transport="serial"):
        self.links[device_id] = DeviceLink(matrix_id, transport, port_type, str(port_index))

    def get_device_links(self):
        return dict(self.links)

    def get_matrix_devices(self):
        return [deepcopy(matrix) for matrix in self.matrices.values()]

    def get_matrix_transport(self, device_id):
        matrix = self.matrices.get(device_id)
        return matrix.transport if matrix else None

    async def async_get_matrix_device(self, device_id, *, transport=None):
        if device_id not in self.matrices:
            raise BackendUnavailableError(f"GET {device_id} failed with status 404")
        return deepcopy(self.matrices[device_id])

    async def async_put_matrix_device(self, matrix):
        if self.fail_put or matrix.id in self.fail_put_ids:
            raise BackendUnavailableError(f"PUT {matrix.id} failed")
        self.put_calls.append(matrix.id)
        self.matrices[matrix.id] = deepcopy(matrix)

    async def async_update_device_link(self, device_id, link):
        if device_id in self.fail_links:
            raise BackendUnavailableError(f"update_device {device_id} failed")
        self.link_calls.append((device_id, link))
        self.links[device_id] = link

    async def async_refresh(self):
        self.refresh_count += 1

    async def async_refresh_profiles(self):
        self.profile_refresh_count += 1

    async def async_delete_matrix_device(self, device_id, *, transport):
        self.deleted_matrices.append(device_id)
        self.matrices.pop(device_id, None)

    async def async_delete_device(self, device_id):
        self.deleted_devices.append(device_id)
        self.links.pop(device_id, None)

    async def async_send_device_command(self, device_id, payload, line_ending, *, transport="serial", **_kwargs):
        self.sent.append((device_id, payload, line_ending, transport))
        return dict(self.send_result)

    async def async_get_learning_ports(self, board_id):
        return list(self.learning_ports.get(board_id, []))

    async def async_start_learning(self, board_id, profile_id, command, port, timeout_seconds):
        self.started.append((board_id, profile_id, command, port, timeout_seconds))

    async def async_poll_learning_status(self, board_id):
        self.poll_count += 1
        if self.poll_error is not None:
            raise self.poll_error
        if self.learning_results:
            return self.learning_results.pop(0)
        return {}

    def record_learned_command(self, profile_id, command):
        self.learned.append((profile_id, command))


def build_snapshot(matrix, inputs=None, outputs=None, **extra):
    """Return a full port snapshot of ``matrix`` with the given device assignments."""

    assignments = {"input": inputs or {}, "output": outputs or {}}
    snapshot = dict(extra)
    for port_type in ("input", "output"):
        records = []
        for port in matrix.table(port_type):
            record = port.as_record()
            if port.index in assignments[port_type]:
                record["device_id"] = assignments[port_type][port.index]
            records.append(record)
        snapshot[f"{port_type}s"] = records
    return snapshot


@pytest.fixture
def registry():
    """Return an empty fake registry."""
    return FakeRegistry()


@pytest.fixture
def matrix(registry):
    """Register an eight-by-eight serial matrix and return it."""
    return registry.add_matrix(
        MatrixDevice(
            id="matrix1",
            transport="serial",
            name="Living Room Matrix",
            routing_template="SET IN{input} OUT{output}",
            query_template="GET OUT{output}",
            line_ending="crlf",
        )
    )


@pytest.fixture
def reconciler(registry):
    """Return a reconciler bound to the fake registry."""
    return TopologyReconciler(registry)


@pytest.fixture
async def manager(registry):
    """Return a manager whose learning controller polls without delay."""
    manager = VdaIrPanelManager(registry, learning=LearningController(registry, poll_interval=0))
    yield manager
    await manager.async_shutdown()
