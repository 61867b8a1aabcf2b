from __future__ import annotations

import numpy as np
import pytest

from camserver.driver import STATUS_DEVICE_NOT_OPEN, STATUS_NOT_FOUND, DriverError
from camserver.dummy_driver import DummyCamera, DummyCameraConfig, DummyDriver, DummyDriverConfig, DummyFrame


def test_list_devices_reports_configured_cameras() -> None:
    driver = DummyDriver(DummyDriverConfig(identifiers=("left", "right")))
    infos = driver.list_devices()
    assert [info.identifier for info in infos] == ["left", "right"]
    assert infos[1].serial == "SIM00001"


def test_open_unknown_camera_is_not_found() -> None:
    with pytest.raises(DriverError) as excinfo:
        DummyDriver().open("camZ")
    assert excinfo.value.status == STATUS_NOT_FOUND


def test_frames_follow_image_size(driver: DummyDriver) -> None:
    camera = driver.open("camA")
    frame = camera.next_frame()
    assert frame.shape == (1216, 1936)
    assert frame.dtype == np.uint8
    assert int(frame.max()) == 255

    camera.set_image_size(320, 240)
    assert camera.next_frame().shape == (240, 320)


def test_closed_camera_rejects_feature_access(driver: DummyDriver) -> None:
    camera = driver.open("camA")
    camera.close()
    assert not camera.is_open
    with pytest.raises(DriverError) as excinfo:
        camera.get_exposure_us()
    assert excinfo.value.status == STATUS_DEVICE_NOT_OPEN


def test_trigger_frame_calls_callback_with_context(driver: DummyDriver) -> None:
    camera = driver.open("camB")
    seen: list[tuple[DummyCamera, DummyFrame, object]] = []
    marker = object()

    def on_frame(handle: object, frame: object, context: object) -> None:
        assert isinstance(handle, DummyCamera)
        assert isinstance(frame, DummyFrame)
        seen.append((handle, frame, context))

    assert not camera.trigger_frame()
    camera.start_capture(on_frame, marker)
    assert camera.trigger_frame()
    camera.stop_capture()
    assert not camera.trigger_frame()
    assert len(seen) == 1
    handle, frame, context = seen[0]
    assert handle is camera
    assert context is marker
    assert frame.as_numpy_ndarray().shape == (1216, 1936)


def test_shutdown_closes_every_camera() -> None:
    driver = DummyDriver(DummyDriverConfig(camera=DummyCameraConfig(free_run=False)))
    cameras = [driver.open(info.identifier) for info in driver.list_devices()]
    driver.shutdown()
    assert all(not camera.is_open for camera in cameras)
    assert driver.camera("camA") is None


def test_delivered_frames_are_drawn_only_on_access(driver: DummyDriver, monkeypatch: pytest.MonkeyPatch) -> None:
    camera = driver.open("camA")
    rendered: list[int] = []
    original_render = camera.render

    def counting_render(index: int, width: int, height: int) -> np.ndarray:
        rendered.append(index)
        return original_render(index, width, height)

    monkeypatch.setattr(camera, "render", counting_render)
    frames: list[DummyFrame] = []
    camera.start_capture(lambda _handle, frame, _context: frames.append(frame), None)  # type: ignore[arg-type]
    for _ in range(3):
        assert camera.trigger_frame()
    camera.stop_capture()

    assert rendered == []
    first = frames[0].as_numpy_ndarray()
    assert first is frames[0].as_numpy_ndarray()
    assert rendered == [0]
    assert np.array_equal(first, camera.render(0, 1936, 1216))
