"""Error kinds raised by the VDA IR Panel core."""

from __future__ import annotations


class VdaIrPanelError(Exception):
    """Base error for the panel core."""


class NoInputPortConfiguredError(VdaIrPanelError):
    """Raised when learning is requested on a port that is not an IR input."""


class InvalidPortCapabilityError(VdaIrPanelError):
    """Raised when a port is used in a role its hardware cannot fill."""


class PortDisabledError(VdaIrPanelError):
    """Raised when a live routing action targets a disabled port."""


class LinkConflictError(VdaIrPanelError):
    """Raised when a submitted edit would give a port or device two owners."""


class BackendUnavailableError(VdaIrPanelError):
    """Raised when a call to the backend fails."""


class LearningTimeoutError(VdaIrPanelError):
    """Raised when a learning session ended without capturing a code."""
