"""Error taxonomy for the realtime console.

All errors raised by the orchestrator derive from ConsoleError so callers
can catch them at a single boundary. Each error carries a short ``code``
that is attached to structured log records.
"""


class ConsoleError(Exception):
    """Base exception for realtime console errors."""

    code: str = "CONSOLE_ERROR"


class DeviceUnavailableError(ConsoleError):
    """Raised when a microphone or speaker cannot be acquired.

    Typical causes are a denied microphone permission or a missing device.
    Recoverable: the session rolls back to idle.
    """

    code = "DEVICE_UNAVAILABLE"


class TransportError(ConsoleError):
    """Protocol-level error reported by the remote service.

    Not fatal on its own; the session only tears down if the transport
    subsequently closes.
    """

    code = "TRANSPORT_ERROR"


class TransportClosedError(ConsoleError):
    """Raised when the transport connection is closed or was never opened."""

    code = "TRANSPORT_CLOSED"


class InvalidModeTransitionError(ConsoleError):
    """Raised when an operation is not valid for the active turn mode."""

    code = "INVALID_MODE_TRANSITION"
