from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import Protocol, TypeVar, cast

import numpy as np

from .driver import (
    STATUS_INTERNAL,
    STATUS_NOT_FOUND,
    BackendUnavailableError,
    DeviceInfo,
    DriverError,
    FrameCallback,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class _VmbFeature(Protocol):
    def get(self) -> object: ...

    def set(self, value: object) -> None: ...

    def get_range(self) -> tuple[object, object]: ...

    def get_available_entries(self) -> list[object]: ...


class _VmbFrame(Protocol):
    def as_numpy_ndarray(self) -> np.ndarray: ...


class _VmbCamera(Protocol):
    def get_id(self) -> str: ...

    def get_name(self) -> str: ...

    def get_model(self) -> str: ...

    def get_serial(self) -> str: ...

    def get_feature_by_name(self, name: str) -> _VmbFeature: ...

    def start_streaming(self, handler: object, buffer_count: int = 5) -> None: ...

    def stop_streaming(self) -> None: ...

    def is_streaming(self) -> bool: ...

    def queue_frame(self, frame: _VmbFrame) -> None: ...

    def __enter__(self) -> "_VmbCamera": ...

    def __exit__(self, *exc_info: object) -> None: ...


class _VmbSystem(Protocol):
    def get_all_cameras(self) -> list[_VmbCamera]: ...

    def get_camera_by_id(self, identifier: str) -> _VmbCamera: ...

    def __enter__(self) -> "_VmbSystem": ...

    def __exit__(self, *exc_info: object) -> None: ...


def _driver_call(what: str, fn: Callable[..., T], *args: object) -> T:
    try:
        return fn(*args)
    except DriverError:
        raise
    except Exception as exc:
        raise DriverError(STATUS_INTERNAL, f"{what}: {exc}") from exc


class VimbaCamera:
    """Device handle backed by an opened `vmbpy` camera."""

    def __init__(self, camera: _VmbCamera, buffer_count: int):
        self._camera: _VmbCamera = camera
        self._buffer_count: int = int(buffer_count)
        self._open: bool = True

    def _get(self, name: str) -> object:
        return _driver_call(f"get {name}", lambda: self._camera.get_feature_by_name(name).get())

    def _set(self, name: str, value: object) -> None:
        _driver_call(f"set {name}", lambda: self._camera.get_feature_by_name(name).set(value))

    def _entries(self, name: str) -> list[str]:
        entries = _driver_call(
            f"list {name}", lambda: self._camera.get_feature_by_name(name).get_available_entries()
        )
        return [str(entry) for entry in cast(list[object], entries)]

    def get_image_format(self) -> str:
        return str(self._get("PixelFormat"))

    def set_image_format(self, value: str) -> None:
        self._set("PixelFormat", value)

    def get_sensor_bit_depth(self) -> str:
        return str(self._get("SensorBitDepth"))

    def set_sensor_bit_depth(self, value: str) -> None:
        self._set("SensorBitDepth", value)

    def get_trigger_line(self) -> str:
        return str(self._get("LineSelector"))

    def set_trigger_line(self, value: str) -> None:
        self._set("LineSelector", value)

    def get_trigger_source(self) -> str:
        return str(self._get("LineSource"))

    def set_trigger_source(self, value: str) -> None:
        self._set("LineSource", value)

    def get_exposure_us(self) -> float:
        return float(cast(float, self._get("ExposureTime")))

    def set_exposure_us(self, value: float) -> None:
        self._set("ExposureTime", float(value))

    def get_frame_rate(self) -> float:
        return float(cast(float, self._get("AcquisitionFrameRate")))

    def set_frame_rate(self, value: float) -> None:
        self._set("AcquisitionFrameRate", float(value))

    # Auto frame rate means the user-set rate limit is disabled.
    def get_frame_rate_auto(self) -> bool:
        return not bool(self._get("AcquisitionFrameRateEnable"))

    def set_frame_rate_auto(self, value: bool) -> None:
        self._set("AcquisitionFrameRateEnable", not bool(value))

    def get_throughput_limit(self) -> int:
        return int(cast(int, self._get("DeviceLinkThroughputLimit")))

    def set_throughput_limit(self, value: int) -> None:
        self._set("DeviceLinkThroughputLimit", int(value))

    def get_throughput_limit_range(self) -> tuple[int, int]:
        low, high = cast(
            tuple[int, int],
            _driver_call(
                "range DeviceLinkThroughputLimit",
                lambda: self._camera.get_feature_by_name("DeviceLinkThroughputLimit").get_range(),
            ),
        )
        return int(low), int(high)

    def get_image_size(self) -> tuple[int, int]:
        return int(cast(int, self._get("Width"))), int(cast(int, self._get("Height")))

    def set_image_size(self, width: int, height: int) -> None:
        self._set("Width", int(width))
        self._set("Height", int(height))

    def get_image_offset(self) -> tuple[int, int]:
        return int(cast(int, self._get("OffsetX"))), int(cast(int, self._get("OffsetY")))

    def set_image_offset(self, x: int, y: int) -> None:
        self._set("OffsetX", int(x))
        self._set("OffsetY", int(y))

    def get_sensor_size(self) -> tuple[int, int]:
        return int(cast(int, self._get("SensorWidth"))), int(cast(int, self._get("SensorHeight")))

    def list_trigger_lines(self) -> list[str]:
        return self._entries("LineSelector")

    def set_trigger_line_mode(self, mode: str) -> None:
        self._set("LineMode", mode)

    def list_trigger_sources(self) -> list[str]:
        return self._entries("LineSource")

    def start_capture(self, callback: FrameCallback, context: object) -> None:
        def handler(camera: _VmbCamera, _stream: object, frame: _VmbFrame) -> None:
            try:
                callback(self, frame, context)
            finally:
                camera.queue_frame(frame)

        _driver_call(
            "start_streaming",
            lambda: self._camera.start_streaming(handler=handler, buffer_count=self._buffer_count),
        )

    def stop_capture(self) -> None:
        if _driver_call("is_streaming", self._camera.is_streaming):
            _driver_call("stop_streaming", self._camera.stop_streaming)

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        try:
            self.stop_capture()
        finally:
            _driver_call("close", lambda: self._camera.__exit__(None, None, None))


class VimbaDriver:
    """Allied Vision cameras through the Vimba X Python API."""

    def __init__(self) -> None:
        try:
            vmbpy_mod = importlib.import_module("vmbpy")
            system_cls = getattr(vmbpy_mod, "VmbSystem", None)
            if system_cls is None:
                raise BackendUnavailableError("vmbpy_missing_VmbSystem")
        except BackendUnavailableError:
            raise
        except Exception as exc:
            raise BackendUnavailableError(f"vmbpy_import_failed: {exc}") from exc

        try:
            system = cast(_VmbSystem, system_cls.get_instance())
            system.__enter__()
        except Exception as exc:
            raise BackendUnavailableError(f"vmbpy_start_failed: {exc}") from exc
        self._system: _VmbSystem | None = system
        self._handles: list[VimbaCamera] = []

    def _require_system(self) -> _VmbSystem:
        if self._system is None:
            raise DriverError(STATUS_INTERNAL, "vimba system already shut down")
        return self._system

    def list_devices(self) -> list[DeviceInfo]:
        system = self._require_system()
        cameras = cast(list[_VmbCamera], _driver_call("get_all_cameras", system.get_all_cameras))
        return [
            DeviceInfo(
                identifier=camera.get_id(),
                name=camera.get_name(),
                model=camera.get_model(),
                serial=camera.get_serial(),
            )
            for camera in cameras
        ]

    def open(self, identifier: str, buffer_count: int = 5) -> VimbaCamera:
        system = self._require_system()
        try:
            camera = system.get_camera_by_id(identifier)
        except Exception as exc:
            raise DriverError(STATUS_NOT_FOUND, f"no such camera: {identifier}") from exc
        _driver_call(f"open {identifier}", camera.__enter__)
        handle = VimbaCamera(camera, buffer_count)
        self._handles.append(handle)
        return handle

    def shutdown(self) -> None:
        system = self._system
        self._system = None
        if system is None:
            return
        for handle in self._handles:
            try:
                handle.close()
            except DriverError as exc:
                logger.warning("Closing camera during shutdown failed: %s", exc)
        self._handles.clear()
        system.__exit__(None, None, None)
