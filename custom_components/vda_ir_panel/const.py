"""Common constants for the VDA IR Panel integration."""

from homeassistant.const import Platform

DOMAIN = "vda_ir_panel"
PLATFORMS: list[Platform] = [Platform.SENSOR]

BACKEND_DOMAIN = "vda_ir_control"
DEFAULT_NAME = "VDA IR Panel"
DEFAULT_URL = "http://localhost:8123"

API_BASE = f"/api/{BACKEND_DOMAIN}"
API_BOARDS = f"{API_BASE}/boards"
API_PROFILES = f"{API_BASE}/profiles"
API_DEVICES = f"{API_BASE}/devices"
API_SERIAL_DEVICES = f"{API_BASE}/serial_devices"
API_NETWORK_DEVICES = f"{API_BASE}/network_devices"
API_HA_DEVICES = f"{API_BASE}/ha_devices"
API_PORTS = f"{API_BASE}/ports"
API_LEARNING = f"{API_BASE}/learning"
API_SERVICES = f"/api/services/{BACKEND_DOMAIN}"

SERVICE_UPDATE_DEVICE = "update_device"
SERVICE_DELETE_DEVICE = "delete_device"
SERVICE_START_LEARNING = "start_learning"

DEVICE_TYPE_MATRIX = "hdmi_matrix"
TRANSPORT_SERIAL = "serial"
TRANSPORT_NETWORK = "network"
TRANSPORTS = (TRANSPORT_SERIAL, TRANSPORT_NETWORK)

PORT_TYPE_INPUT = "input"
PORT_TYPE_OUTPUT = "output"
PORT_TYPES = (PORT_TYPE_INPUT, PORT_TYPE_OUTPUT)
PORT_MODE_IR_INPUT = "ir_input"

DEVICE_KIND_IR = "ir"
DEVICE_KIND_SERIAL = "serial"
DEVICE_KIND_HA = "ha"

DEFAULT_MATRIX_PORT_COUNT = 8
DEFAULT_LINE_ENDING = "crlf"

LEARNING_POLL_INTERVAL = 0.5
LEARNING_MAX_ATTEMPTS = 30
LEARNING_TIMEOUT_SECONDS = 15

REQUEST_TIMEOUT_SECONDS = 10
COMMAND_RESPONSE_TIMEOUT = 2.0
