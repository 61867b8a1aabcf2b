from __future__ import annotations

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from camserver.dummy_driver import DummyCameraConfig, DummyDriver, DummyDriverConfig
from camserver.registry import DeviceRegistry
from camserver.signal_driver import DummySignalDriver


@pytest.fixture()
def driver() -> Generator[DummyDriver, None, None]:
    drv = DummyDriver(DummyDriverConfig(camera=DummyCameraConfig(free_run=False)))
    yield drv
    drv.shutdown()


@pytest.fixture()
def signal_out() -> DummySignalDriver:
    return DummySignalDriver()


@pytest.fixture()
def registry(driver: DummyDriver, signal_out: DummySignalDriver) -> Generator[DeviceRegistry, None, None]:
    reg = DeviceRegistry.enumerate_and_open(driver, signal_out)
    yield reg
    reg.close_all()
