"""
Camera control server that mirrors frame acquisition onto digital output lines.

Modules:
- hasher: Stable 32-bit keys for camera identifiers
- driver: Camera driver interface and status codes
- dummy_driver: Simulated cameras
- vimba_driver: Allied Vision cameras via vmbpy
- signal_driver: Digital output drivers
- session: Per-camera session and acquisition callback
- registry: Sessions keyed by identifier hash
- commands: Parameter command table and dispatch
- protocol: Multipart request/reply wire format
- server: ZeroMQ request/reply loop and CLI
- client: Request helpers and CLI
- logging_config: One-shot logging setup
"""

from .driver import (
    STATUS_BAD_PARAMETER,
    STATUS_DEVICE_NOT_OPEN,
    STATUS_INTERNAL,
    STATUS_INVALID_VALUE,
    STATUS_IO,
    STATUS_NOT_FOUND,
    STATUS_SUCCESS,
    STATUS_WRONG_TYPE,
    BackendUnavailableError,
    DeviceInfo,
    DriverError,
)
from .hasher import hash_identifier
from .dummy_driver import DummyCamera, DummyCameraConfig, DummyDriver, DummyDriverConfig
from .signal_driver import DummySignalDriver, open_signal_driver
from .session import DeviceSession, acquisition_callback
from .registry import DeviceRegistry
from .commands import CommandDescriptor, CommandRegistry, ValueKind, build_command_registry
from .protocol import Reply, Request, decode_request, encode_reply
from .server import ProtocolServer, ServerConfig, parse_args

__all__ = [
    # Status codes
    "STATUS_SUCCESS",
    "STATUS_INTERNAL",
    "STATUS_NOT_FOUND",
    "STATUS_DEVICE_NOT_OPEN",
    "STATUS_BAD_PARAMETER",
    "STATUS_WRONG_TYPE",
    "STATUS_INVALID_VALUE",
    "STATUS_IO",
    # Drivers
    "BackendUnavailableError",
    "DeviceInfo",
    "DriverError",
    "DummyCamera",
    "DummyCameraConfig",
    "DummyDriver",
    "DummyDriverConfig",
    "DummySignalDriver",
    "open_signal_driver",
    # Sessions
    "hash_identifier",
    "DeviceSession",
    "acquisition_callback",
    "DeviceRegistry",
    # Commands
    "CommandDescriptor",
    "CommandRegistry",
    "ValueKind",
    "build_command_registry",
    # Protocol
    "Request",
    "Reply",
    "decode_request",
    "encode_reply",
    # Server
    "ProtocolServer",
    "ServerConfig",
    "parse_args",
]
