from __future__ import annotations

import time

import numpy as np
import pytest

from camserver.driver import DeviceInfo, DriverError
from camserver.dummy_driver import DummyCamera, DummyCameraConfig, DummyDriver, DummyDriverConfig
from camserver.hasher import hash_identifier
from camserver.session import UNBOUND_SIGNAL_BIT, DeviceSession, acquisition_callback
from camserver.signal_driver import DummySignalDriver


def _open(driver: DummyDriver, signal_out: DummySignalDriver | None, index: int = 0) -> tuple[DeviceSession, DummyCamera]:
    info = driver.list_devices()[index]
    session = DeviceSession.open(driver, info, signal_out)
    camera = driver.camera(info.identifier)
    assert camera is not None
    return session, camera


def test_open_normalizes_trigger_lines(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, camera = _open(driver, signal_out)
    assert session.is_open
    assert not session.is_capturing
    assert session.key == hash_identifier("camA")
    assert set(camera.line_modes.values()) == {"Output"}
    assert camera.get_trigger_line() == "Line0"


def test_open_failure_propagates() -> None:
    driver = DummyDriver(DummyDriverConfig(fail_open=frozenset({"camA"})))
    with pytest.raises(DriverError):
        DeviceSession.open(driver, driver.list_devices()[0])


def test_start_capture_is_idempotent(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, camera = _open(driver, signal_out)
    session.start_capture()
    session.start_capture()
    assert session.is_capturing
    assert camera.is_capturing
    assert camera.capture_starts == 1


def test_stop_capture_when_idle_is_noop(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, _camera = _open(driver, signal_out)
    session.stop_capture()
    assert not session.is_capturing
    assert signal_out.writes == []


def test_frame_toggles_bound_bit_and_stop_resets_it(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, camera = _open(driver, signal_out)
    session.bind_signal_bit(2)
    session.start_capture()

    assert camera.trigger_frame()
    assert signal_out.bit(2) == 1
    assert session.toggle_state == 1

    assert camera.trigger_frame()
    assert signal_out.bit(2) == 0

    assert camera.trigger_frame()
    assert signal_out.bit(2) == 1

    session.stop_capture()
    assert not session.is_capturing
    assert session.toggle_state == 0
    assert signal_out.bit(2) == 0
    assert signal_out.writes == [(2, 1), (2, 0), (2, 1), (2, 0)]
    assert not camera.trigger_frame()


def test_frame_without_bound_bit_writes_nothing(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, camera = _open(driver, signal_out)
    session.start_capture()
    assert camera.trigger_frame()
    assert signal_out.writes == []
    assert session.toggle_state == 0
    session.stop_capture()
    assert signal_out.writes == []


def test_frame_without_signal_driver_is_noop(driver: DummyDriver) -> None:
    session, camera = _open(driver, None)
    session.bind_signal_bit(5)
    assert session.signal_bit == 5
    session.start_capture()
    assert camera.trigger_frame()
    assert session.toggle_state == 0
    session.stop_capture()


def test_callback_swallows_signal_write_failures(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, camera = _open(driver, signal_out)
    session.bind_signal_bit(0)
    session.start_capture()
    signal_out.fail_writes = True
    assert camera.trigger_frame()
    signal_out.fail_writes = False
    session.stop_capture()
    assert signal_out.bit(0) == 0


def test_callback_ignores_foreign_context() -> None:
    frame = np.zeros((4, 4), dtype=np.uint8)
    acquisition_callback(None, frame, object())  # type: ignore[arg-type]


def test_negative_bit_unbinds(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, _camera = _open(driver, signal_out)
    session.bind_signal_bit(1)
    session.bind_signal_bit(-5)
    assert session.signal_bit == UNBOUND_SIGNAL_BIT


def test_close_stops_capture_and_is_idempotent(driver: DummyDriver, signal_out: DummySignalDriver) -> None:
    session, camera = _open(driver, signal_out)
    session.bind_signal_bit(1)
    session.start_capture()
    camera.trigger_frame()

    session.close()
    assert not session.is_open
    assert not session.is_capturing
    assert not camera.is_open
    assert signal_out.bit(1) == 0
    assert session.handle is None

    session.close()
    session.start_capture()
    assert not session.is_capturing


def test_session_without_handle_treats_capture_as_noop() -> None:
    session = DeviceSession(DeviceInfo(identifier="ghost"), None)
    session.start_capture()
    session.stop_capture()
    session.close()
    assert not session.is_open
    assert not session.is_capturing


def test_free_running_capture_toggles_until_stopped(signal_out: DummySignalDriver) -> None:
    config = DummyDriverConfig(
        identifiers=("camA",),
        camera=DummyCameraConfig(sensor_width=64, sensor_height=48, free_run=True),
    )
    driver = DummyDriver(config)
    try:
        session, camera = _open(driver, signal_out)
        camera.set_frame_rate(200.0)
        session.bind_signal_bit(4)
        session.start_capture()

        deadline = time.monotonic() + 2.0
        while time.monotonic() < deadline and len(signal_out.writes) < 5:
            time.sleep(0.01)
        session.stop_capture()

        writes = list(signal_out.writes)
        assert len(writes) >= 5
        assert writes[-1] == (4, 0)
        assert signal_out.bit(4) == 0

        time.sleep(0.05)
        assert len(signal_out.writes) == len(writes)
    finally:
        driver.shutdown()
