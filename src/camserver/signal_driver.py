from __future__ import annotations

import importlib
import logging
import threading
from typing import Protocol

from .driver import STATUS_BAD_PARAMETER, STATUS_IO, BackendUnavailableError, DriverError


logger = logging.getLogger(__name__)

PORT_BITS = 8


class SignalDriver(Protocol):
    @property
    def bit_count(self) -> int: ...

    def write_bit(self, bit: int, value: int) -> None: ...

    def write_port(self, value: int) -> None: ...

    def close(self) -> None: ...


class DummySignalDriver:
    """Keeps the output port in memory and records every write."""

    def __init__(self, bit_count: int = PORT_BITS):
        self._bit_count: int = int(bit_count)
        self._lock: threading.Lock = threading.Lock()
        self._port: int = 0
        self.writes: list[tuple[int, int]] = []
        self.fail_writes: bool = False
        self.closed: bool = False

    @property
    def bit_count(self) -> int:
        return self._bit_count

    @property
    def port_value(self) -> int:
        with self._lock:
            return self._port

    def bit(self, bit: int) -> int:
        with self._lock:
            return (self._port >> bit) & 1

    def write_bit(self, bit: int, value: int) -> None:
        if self.fail_writes:
            raise DriverError(STATUS_IO, "simulated write failure")
        if bit < 0 or bit >= self._bit_count:
            raise DriverError(STATUS_BAD_PARAMETER, f"bit out of range: {bit}")
        with self._lock:
            if value:
                self._port |= 1 << bit
            else:
                self._port &= ~(1 << bit)
            self.writes.append((bit, 1 if value else 0))

    def write_port(self, value: int) -> None:
        if self.fail_writes:
            raise DriverError(STATUS_IO, "simulated write failure")
        with self._lock:
            self._port = int(value) & ((1 << self._bit_count) - 1)

    def close(self) -> None:
        self.closed = True


class LgpioSignalDriver:
    """Port 0 of a digital I/O unit: lines 0-7 of `/dev/gpiochip<unit>` claimed as outputs."""

    def __init__(self, unit: int, bit_count: int = PORT_BITS):
        try:
            self._lgpio = importlib.import_module("lgpio")
        except Exception as exc:
            raise BackendUnavailableError(f"lgpio_import_failed: {exc}") from exc

        self._bit_count: int = int(bit_count)
        try:
            self._chip: int | None = int(self._lgpio.gpiochip_open(int(unit)))
        except Exception as exc:
            raise DriverError(STATUS_IO, f"could not open gpiochip{unit}: {exc}") from exc

        try:
            for bit in range(self._bit_count):
                _ = self._lgpio.gpio_claim_output(self._chip, bit, 0)
        except Exception as exc:
            self.close()
            raise DriverError(STATUS_IO, f"could not claim outputs on gpiochip{unit}: {exc}") from exc

    @property
    def bit_count(self) -> int:
        return self._bit_count

    def _require_chip(self) -> int:
        if self._chip is None:
            raise DriverError(STATUS_IO, "gpio chip is closed")
        return self._chip

    def write_bit(self, bit: int, value: int) -> None:
        if bit < 0 or bit >= self._bit_count:
            raise DriverError(STATUS_BAD_PARAMETER, f"bit out of range: {bit}")
        chip = self._require_chip()
        try:
            _ = self._lgpio.gpio_write(chip, bit, 1 if value else 0)
        except Exception as exc:
            raise DriverError(STATUS_IO, f"write bit {bit} failed: {exc}") from exc

    def write_port(self, value: int) -> None:
        for bit in range(self._bit_count):
            self.write_bit(bit, (value >> bit) & 1)

    def close(self) -> None:
        chip = self._chip
        self._chip = None
        if chip is None:
            return
        for bit in range(self._bit_count):
            try:
                _ = self._lgpio.gpio_free(chip, bit)
            except Exception as exc:
                logger.debug("gpio_free(%d) failed: %s", bit, exc)
        _ = self._lgpio.gpiochip_close(chip)


def open_signal_driver(backend: str, unit: int) -> SignalDriver | None:
    """Open the digital output unit and drive every bit low.

    Returns None when the unit is unavailable; signal synchronisation is then
    disabled for the whole run.
    """
    if backend == "none":
        logger.info("Signal output disabled")
        return None

    driver: SignalDriver
    try:
        if backend == "dummy":
            driver = DummySignalDriver()
        elif backend == "lgpio":
            driver = LgpioSignalDriver(unit)
        else:
            raise BackendUnavailableError(f"unknown_signal_backend: {backend}")
    except (BackendUnavailableError, DriverError) as exc:
        logger.error("Could not open digital I/O unit %d, signal output disabled: %s", unit, exc)
        return None

    try:
        driver.write_port(0)
    except DriverError as exc:
        logger.error("Could not drive port 0 low on unit %d: %s", unit, exc)
    logger.info("Digital I/O unit %d ready (%s, %d bits)", unit, backend, driver.bit_count)
    return driver
