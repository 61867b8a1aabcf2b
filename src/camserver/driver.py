from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import numpy as np


STATUS_SUCCESS = 0
STATUS_INTERNAL = -1
STATUS_NOT_FOUND = -3
STATUS_DEVICE_NOT_OPEN = -5
STATUS_BAD_PARAMETER = -7
STATUS_WRONG_TYPE = -10
STATUS_INVALID_VALUE = -11
STATUS_IO = -20


class DriverError(RuntimeError):
    """A device or signal driver call failed; `status` is reported to clients as-is."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"driver_error: {status}")
        self.status: int = int(status)


class BackendUnavailableError(RuntimeError):
    pass


@dataclass(frozen=True)
class DeviceInfo:
    identifier: str
    name: str = ""
    model: str = ""
    serial: str = ""


class Frame(Protocol):
    """A captured frame as handed over by the driver; pixels are converted only on request."""

    def as_numpy_ndarray(self) -> np.ndarray: ...


FrameCallback = Callable[["DeviceHandle", Frame, object], None]


class DeviceHandle(Protocol):
    def get_image_format(self) -> str: ...

    def set_image_format(self, value: str) -> None: ...

    def get_sensor_bit_depth(self) -> str: ...

    def set_sensor_bit_depth(self, value: str) -> None: ...

    def get_trigger_line(self) -> str: ...

    def set_trigger_line(self, value: str) -> None: ...

    def get_trigger_source(self) -> str: ...

    def set_trigger_source(self, value: str) -> None: ...

    def get_exposure_us(self) -> float: ...

    def set_exposure_us(self, value: float) -> None: ...

    def get_frame_rate(self) -> float: ...

    def set_frame_rate(self, value: float) -> None: ...

    def get_frame_rate_auto(self) -> bool: ...

    def set_frame_rate_auto(self, value: bool) -> None: ...

    def get_throughput_limit(self) -> int: ...

    def set_throughput_limit(self, value: int) -> None: ...

    def get_throughput_limit_range(self) -> tuple[int, int]: ...

    def get_image_size(self) -> tuple[int, int]: ...

    def set_image_size(self, width: int, height: int) -> None: ...

    def get_image_offset(self) -> tuple[int, int]: ...

    def set_image_offset(self, x: int, y: int) -> None: ...

    def get_sensor_size(self) -> tuple[int, int]: ...

    def list_trigger_lines(self) -> list[str]: ...

    def set_trigger_line_mode(self, mode: str) -> None: ...

    def list_trigger_sources(self) -> list[str]: ...

    def start_capture(self, callback: FrameCallback, context: object) -> None: ...

    def stop_capture(self) -> None: ...

    def close(self) -> None: ...


class DeviceDriver(Protocol):
    def list_devices(self) -> list[DeviceInfo]: ...

    def open(self, identifier: str, buffer_count: int = 5) -> DeviceHandle: ...

    def shutdown(self) -> None: ...
