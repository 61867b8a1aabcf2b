from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

import cv2
import numpy as np

from .driver import (
    STATUS_BAD_PARAMETER,
    STATUS_DEVICE_NOT_OPEN,
    STATUS_INVALID_VALUE,
    STATUS_NOT_FOUND,
    DeviceInfo,
    DriverError,
    FrameCallback,
)


EXPOSURE_RANGE_US = (10.0, 10_000_000.0)
FRAME_RATE_RANGE_HZ = (1.0, 1000.0)
THROUGHPUT_LIMIT_RANGE = (4_000_000, 450_000_000)

IMAGE_FORMATS = ("Mono8", "Mono10", "Mono12", "Mono12p")
SENSOR_BIT_DEPTHS = ("Adc10Bit", "Adc12Bit")
TRIGGER_LINES = ("Line0", "Line1", "Line2", "Line3")
TRIGGER_LINE_MODES = ("Input", "Output")
TRIGGER_SOURCES = ("Off", "ExposureActive", "FrameTriggerReady", "AcquisitionTriggerReady", "UserOutput0")


@dataclass
class DummyCameraConfig:
    sensor_width: int = 1936
    sensor_height: int = 1216
    num_dots: int = 3
    seed: int = 0
    dot_radius: int = 3
    background_value: int = 0
    dot_value: int = 255
    free_run: bool = True


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


class DummyFrame:
    """Frame handle delivered to callbacks; the image is drawn on first access."""

    def __init__(self, camera: DummyCamera, index: int, width: int, height: int):
        self._camera: DummyCamera = camera
        self.index: int = index
        self.width: int = width
        self.height: int = height
        self._pixels: np.ndarray | None = None

    def as_numpy_ndarray(self) -> np.ndarray:
        if self._pixels is None:
            self._pixels = self._camera.render(self.index, self.width, self.height)
        return self._pixels


class DummyCamera:
    """In-memory camera with the same feature surface as the hardware driver.

    With `free_run` a background thread delivers frames at the configured frame
    rate; otherwise frames are only delivered by `trigger_frame()`.
    """

    def __init__(self, info: DeviceInfo, config: DummyCameraConfig | None = None):
        self._info: DeviceInfo = info
        self._config: DummyCameraConfig = config if config is not None else DummyCameraConfig()
        self._lock: threading.Lock = threading.Lock()
        self._open: bool = True

        self._image_format: str = IMAGE_FORMATS[0]
        self._sensor_bit_depth: str = SENSOR_BIT_DEPTHS[-1]
        self._trigger_line: str = TRIGGER_LINES[0]
        self._line_modes: dict[str, str] = {line: "Input" for line in TRIGGER_LINES}
        self._line_sources: dict[str, str] = {line: "Off" for line in TRIGGER_LINES}
        self._exposure_us: float = 5000.0
        self._frame_rate: float = 30.0
        self._frame_rate_auto: bool = False
        self._throughput_limit: int = THROUGHPUT_LIMIT_RANGE[1]
        self._width: int = int(self._config.sensor_width)
        self._height: int = int(self._config.sensor_height)
        self._offset_x: int = 0
        self._offset_y: int = 0

        self._callback: FrameCallback | None = None
        self._context: object = None
        self._stop_event: threading.Event = threading.Event()
        self._thread: threading.Thread | None = None
        self._frame_index: int = 0
        self.capture_starts: int = 0

    @property
    def info(self) -> DeviceInfo:
        return self._info

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_capturing(self) -> bool:
        return self._callback is not None

    @property
    def line_modes(self) -> dict[str, str]:
        with self._lock:
            return dict(self._line_modes)

    def _require_open(self) -> None:
        if not self._open:
            raise DriverError(STATUS_DEVICE_NOT_OPEN, f"camera {self._info.identifier} is closed")

    @staticmethod
    def _choose(value: str, allowed: Iterable[str]) -> str:
        if value not in allowed:
            raise DriverError(STATUS_INVALID_VALUE, f"invalid entry: {value!r}")
        return value

    def get_image_format(self) -> str:
        self._require_open()
        return self._image_format

    def set_image_format(self, value: str) -> None:
        self._require_open()
        self._image_format = self._choose(value, IMAGE_FORMATS)

    def get_sensor_bit_depth(self) -> str:
        self._require_open()
        return self._sensor_bit_depth

    def set_sensor_bit_depth(self, value: str) -> None:
        self._require_open()
        self._sensor_bit_depth = self._choose(value, SENSOR_BIT_DEPTHS)

    def get_trigger_line(self) -> str:
        self._require_open()
        return self._trigger_line

    def set_trigger_line(self, value: str) -> None:
        self._require_open()
        self._trigger_line = self._choose(value, TRIGGER_LINES)

    def get_trigger_source(self) -> str:
        self._require_open()
        return self._line_sources[self._trigger_line]

    def set_trigger_source(self, value: str) -> None:
        self._require_open()
        self._line_sources[self._trigger_line] = self._choose(value, TRIGGER_SOURCES)

    def get_exposure_us(self) -> float:
        self._require_open()
        return self._exposure_us

    def set_exposure_us(self, value: float) -> None:
        self._require_open()
        self._exposure_us = _clamp(float(value), EXPOSURE_RANGE_US)

    def get_frame_rate(self) -> float:
        self._require_open()
        with self._lock:
            return self._frame_rate

    def set_frame_rate(self, value: float) -> None:
        self._require_open()
        with self._lock:
            self._frame_rate = _clamp(float(value), FRAME_RATE_RANGE_HZ)

    def get_frame_rate_auto(self) -> bool:
        self._require_open()
        return self._frame_rate_auto

    def set_frame_rate_auto(self, value: bool) -> None:
        self._require_open()
        self._frame_rate_auto = bool(value)

    def get_throughput_limit(self) -> int:
        self._require_open()
        return self._throughput_limit

    def set_throughput_limit(self, value: int) -> None:
        self._require_open()
        low, high = THROUGHPUT_LIMIT_RANGE
        self._throughput_limit = max(low, min(high, int(value)))

    def get_throughput_limit_range(self) -> tuple[int, int]:
        self._require_open()
        return THROUGHPUT_LIMIT_RANGE

    def get_image_size(self) -> tuple[int, int]:
        self._require_open()
        return self._width, self._height

    def set_image_size(self, width: int, height: int) -> None:
        self._require_open()
        if width <= 0 or height <= 0:
            raise DriverError(STATUS_BAD_PARAMETER, "image size must be positive")
        if self._offset_x + width > self._config.sensor_width or self._offset_y + height > self._config.sensor_height:
            raise DriverError(STATUS_INVALID_VALUE, "image size exceeds sensor")
        self._width = int(width)
        self._height = int(height)

    def get_image_offset(self) -> tuple[int, int]:
        self._require_open()
        return self._offset_x, self._offset_y

    def set_image_offset(self, x: int, y: int) -> None:
        self._require_open()
        if x < 0 or y < 0:
            raise DriverError(STATUS_BAD_PARAMETER, "image offset must not be negative")
        if x + self._width > self._config.sensor_width or y + self._height > self._config.sensor_height:
            raise DriverError(STATUS_INVALID_VALUE, "image offset exceeds sensor")
        self._offset_x = int(x)
        self._offset_y = int(y)

    def get_sensor_size(self) -> tuple[int, int]:
        self._require_open()
        return int(self._config.sensor_width), int(self._config.sensor_height)

    def list_trigger_lines(self) -> list[str]:
        self._require_open()
        return list(TRIGGER_LINES)

    def set_trigger_line_mode(self, mode: str) -> None:
        self._require_open()
        with self._lock:
            self._line_modes[self._trigger_line] = self._choose(mode, TRIGGER_LINE_MODES)

    def list_trigger_sources(self) -> list[str]:
        self._require_open()
        return list(TRIGGER_SOURCES)

    def start_capture(self, callback: FrameCallback, context: object) -> None:
        self._require_open()
        with self._lock:
            if self._callback is not None:
                raise DriverError(STATUS_INVALID_VALUE, "capture already running")
            self._callback = callback
            self._context = context
            self.capture_starts += 1
            if self._config.free_run:
                self._stop_event.clear()
                self._thread = threading.Thread(target=self._loop, daemon=True)
                self._thread.start()

    def stop_capture(self) -> None:
        self._stop_event.set()
        with self._lock:
            thread = self._thread
            self._thread = None
            self._callback = None
            self._context = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def close(self) -> None:
        self.stop_capture()
        self._open = False

    def trigger_frame(self) -> bool:
        """Deliver one frame synchronously; returns False when not capturing."""
        with self._lock:
            callback = self._callback
            context = self._context
        if callback is None:
            return False
        callback(self, self._take_frame(), context)
        return True

    def next_frame(self) -> np.ndarray:
        return self._take_frame().as_numpy_ndarray()

    def _take_frame(self) -> DummyFrame:
        frame = DummyFrame(self, self._frame_index, self._width, self._height)
        self._frame_index += 1
        return frame

    def render(self, index: int, width: int, height: int) -> np.ndarray:
        cfg = self._config
        frame = np.full((height, width), fill_value=cfg.background_value, dtype=np.uint8)

        radius = max(1, int(cfg.dot_radius))
        x_high = max(radius + 1, width - radius)
        y_high = max(radius + 1, height - radius)

        rng = np.random.default_rng(cfg.seed + index)
        for _ in range(max(0, int(cfg.num_dots))):
            x = int(rng.integers(radius, x_high))
            y = int(rng.integers(radius, y_high))
            _ = cv2.circle(frame, (x, y), radius, int(cfg.dot_value), thickness=-1)
        return frame

    def _loop(self) -> None:
        next_tick = time.perf_counter()
        while not self._stop_event.is_set():
            with self._lock:
                callback = self._callback
                context = self._context
                fps = self._frame_rate
            if callback is None:
                return

            callback(self, self._take_frame(), context)

            next_tick += 1.0 / fps
            now = time.perf_counter()
            wait_s = next_tick - now
            if wait_s > 0:
                _ = self._stop_event.wait(wait_s)
            else:
                next_tick = now


@dataclass
class DummyDriverConfig:
    identifiers: tuple[str, ...] = ("camA", "camB")
    camera: DummyCameraConfig = field(default_factory=DummyCameraConfig)
    fail_open: frozenset[str] = frozenset()


class DummyDriver:
    def __init__(self, config: DummyDriverConfig | None = None):
        self._config: DummyDriverConfig = config if config is not None else DummyDriverConfig()
        self._cameras: dict[str, DummyCamera] = {}

    def list_devices(self) -> list[DeviceInfo]:
        return [
            DeviceInfo(
                identifier=identifier,
                name=f"Simulated {identifier}",
                model="Dummy-1800",
                serial=f"SIM{index:05d}",
            )
            for index, identifier in enumerate(self._config.identifiers)
        ]

    def open(self, identifier: str, buffer_count: int = 5) -> DummyCamera:
        infos = {info.identifier: info for info in self.list_devices()}
        info = infos.get(identifier)
        if info is None:
            raise DriverError(STATUS_NOT_FOUND, f"no such camera: {identifier}")
        if identifier in self._config.fail_open:
            raise DriverError(STATUS_DEVICE_NOT_OPEN, f"could not open camera: {identifier}")
        camera = DummyCamera(info, self._config.camera)
        self._cameras[identifier] = camera
        return camera

    def camera(self, identifier: str) -> DummyCamera | None:
        return self._cameras.get(identifier)

    def shutdown(self) -> None:
        for camera in self._cameras.values():
            camera.close()
        self._cameras.clear()
