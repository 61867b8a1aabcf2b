from __future__ import annotations

import importlib.util
import sys
import types

import pytest

from camserver.driver import STATUS_BAD_PARAMETER, DriverError
from camserver.signal_driver import PORT_BITS, DummySignalDriver, LgpioSignalDriver, open_signal_driver


def test_dummy_unit_opens_with_port_low() -> None:
    driver = open_signal_driver("dummy", 0)
    assert isinstance(driver, DummySignalDriver)
    assert driver.bit_count == PORT_BITS
    assert driver.port_value == 0


def test_disabled_and_unknown_backends_give_no_driver() -> None:
    assert open_signal_driver("none", 0) is None
    assert open_signal_driver("parport", 0) is None


@pytest.mark.skipif(importlib.util.find_spec("lgpio") is not None, reason="lgpio installed")
def test_missing_lgpio_disables_signal_output() -> None:
    assert open_signal_driver("lgpio", 0) is None


def test_write_bit_range_is_checked() -> None:
    driver = DummySignalDriver()
    with pytest.raises(DriverError) as excinfo:
        driver.write_bit(PORT_BITS, 1)
    assert excinfo.value.status == STATUS_BAD_PARAMETER
    with pytest.raises(DriverError):
        driver.write_bit(-1, 1)
    assert driver.writes == []


def test_write_bit_only_touches_one_bit() -> None:
    driver = DummySignalDriver()
    driver.write_port(0b1010_0000)
    driver.write_bit(0, 1)
    driver.write_bit(5, 0)
    assert driver.port_value == 0b1000_0001
    driver.write_port(0x1FF)
    assert driver.port_value == 0xFF


class FakeLgpio:
    def __init__(self) -> None:
        self.levels: dict[int, int] = {}
        self.freed: list[int] = []
        self.closed: bool = False

    def gpiochip_open(self, unit: int) -> int:
        if unit != 0:
            raise OSError("no such chip")
        return 7

    def gpio_claim_output(self, chip: int, gpio: int, level: int = 0) -> int:
        self.levels[gpio] = level
        return 0

    def gpio_write(self, chip: int, gpio: int, level: int) -> int:
        self.levels[gpio] = level
        return 0

    def gpio_free(self, chip: int, gpio: int) -> int:
        self.freed.append(gpio)
        return 0

    def gpiochip_close(self, chip: int) -> int:
        self.closed = True
        return 0


@pytest.fixture()
def fake_lgpio(monkeypatch: pytest.MonkeyPatch) -> FakeLgpio:
    fake = FakeLgpio()
    module = types.ModuleType("lgpio")
    for name in ("gpiochip_open", "gpio_claim_output", "gpio_write", "gpio_free", "gpiochip_close"):
        setattr(module, name, getattr(fake, name))
    monkeypatch.setitem(sys.modules, "lgpio", module)
    return fake


def test_lgpio_unit_drives_lines(fake_lgpio: FakeLgpio) -> None:
    driver = open_signal_driver("lgpio", 0)
    assert isinstance(driver, LgpioSignalDriver)
    assert fake_lgpio.levels == {bit: 0 for bit in range(PORT_BITS)}

    driver.write_bit(3, 1)
    assert fake_lgpio.levels[3] == 1
    driver.write_port(0b0000_0101)
    assert [fake_lgpio.levels[bit] for bit in range(4)] == [1, 0, 1, 0]

    driver.close()
    driver.close()
    assert fake_lgpio.freed == list(range(PORT_BITS))
    assert fake_lgpio.closed
    with pytest.raises(DriverError):
        driver.write_bit(0, 1)


def test_lgpio_missing_chip_disables_signal_output(fake_lgpio: FakeLgpio) -> None:
    assert open_signal_driver("lgpio", 3) is None
