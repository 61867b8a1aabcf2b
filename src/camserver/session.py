from __future__ import annotations

import logging

from .driver import STATUS_BAD_PARAMETER, DeviceDriver, DeviceHandle, DeviceInfo, DriverError, Frame
from .hasher import hash_identifier
from .signal_driver import SignalDriver


logger = logging.getLogger(__name__)

UNBOUND_SIGNAL_BIT = -1


def acquisition_callback(handle: DeviceHandle, frame: Frame, context: object) -> None:
    """Runs on the driver's thread once per frame: flip the session's output bit.

    Never blocks and never logs; a failed write is dropped.
    """
    session = context
    if not isinstance(session, DeviceSession):
        return
    signal = session._signal
    # one read of the bound bit, rebinding from the server loop is a single store
    bit = session._signal_bit
    if signal is None or bit < 0:
        return
    session._toggle_state ^= 1
    try:
        signal.write_bit(bit, session._toggle_state)
    except Exception:
        pass


class DeviceSession:
    def __init__(self, info: DeviceInfo, handle: DeviceHandle | None, signal: SignalDriver | None = None):
        self._info: DeviceInfo = info
        self._key: int = hash_identifier(info.identifier)
        self._handle: DeviceHandle | None = handle
        self._signal: SignalDriver | None = signal
        self._open: bool = handle is not None
        self._capturing: bool = False
        self._signal_bit: int = UNBOUND_SIGNAL_BIT
        self._toggle_state: int = 0

    @classmethod
    def open(
        cls,
        driver: DeviceDriver,
        info: DeviceInfo,
        signal: SignalDriver | None = None,
        buffer_count: int = 5,
    ) -> DeviceSession:
        """Open the device and normalise its trigger lines; DriverError if it cannot be opened."""
        handle = driver.open(info.identifier, buffer_count)
        session = cls(info, handle, signal)
        session._normalize_trigger_lines()
        return session

    @property
    def key(self) -> int:
        return self._key

    @property
    def info(self) -> DeviceInfo:
        return self._info

    @property
    def handle(self) -> DeviceHandle | None:
        return self._handle if self._open else None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def signal_bit(self) -> int:
        return self._signal_bit

    @property
    def toggle_state(self) -> int:
        return self._toggle_state

    def bind_signal_bit(self, bit: int) -> None:
        if bit < 0:
            self._signal_bit = UNBOUND_SIGNAL_BIT
            return
        if self._signal is not None and bit >= self._signal.bit_count:
            raise DriverError(STATUS_BAD_PARAMETER, f"signal bit out of range: {bit}")
        self._signal_bit = int(bit)

    def start_capture(self) -> None:
        handle = self.handle
        if handle is None or self._capturing:
            return
        handle.start_capture(acquisition_callback, self)
        self._capturing = True
        logger.info("Capture started on %s", self._info.identifier)

    def stop_capture(self) -> None:
        handle = self.handle
        if handle is None or not self._capturing:
            return
        handle.stop_capture()
        self._capturing = False
        logger.info("Capture stopped on %s", self._info.identifier)

        bit = self._signal_bit
        if self._signal is not None and bit >= 0:
            self._toggle_state = 0
            try:
                self._signal.write_bit(bit, self._toggle_state)
            except DriverError as exc:
                logger.warning("Could not reset signal bit %d for %s: %s", bit, self._info.identifier, exc)

    def close(self) -> None:
        if not self._open or self._handle is None:
            return
        try:
            if self._capturing:
                self.stop_capture()
        finally:
            self._open = False
            self._capturing = False
            self._handle.close()
            logger.info("Closed %s", self._info.identifier)

    def _normalize_trigger_lines(self) -> None:
        """Switch every trigger line to output, then restore the selected line."""
        handle = self._handle
        if handle is None:
            return
        ident = self._info.identifier
        try:
            selected = handle.get_trigger_line()
        except DriverError as exc:
            logger.warning("Could not get selected trigger line on %s: %s", ident, exc)
            return
        try:
            lines = handle.list_trigger_lines()
        except DriverError as exc:
            logger.warning("Could not get trigger lines list on %s: %s", ident, exc)
            return

        for line in lines:
            try:
                handle.set_trigger_line(line)
            except DriverError as exc:
                logger.warning("Could not select line %s on %s: %s", line, ident, exc)
                continue
            try:
                handle.set_trigger_line_mode("Output")
            except DriverError as exc:
                logger.warning("Could not set line %s to output on %s: %s", line, ident, exc)

        try:
            handle.set_trigger_line(selected)
        except DriverError as exc:
            logger.warning("Could not select line %s on %s: %s", selected, ident, exc)
            return

        try:
            source = handle.get_trigger_source()
            sources = handle.list_trigger_sources()
        except DriverError as exc:
            logger.warning("Could not get trigger sources on %s: %s", ident, exc)
            return
        logger.debug("%s trigger line %s source %s (available: %s)", ident, selected, source, ", ".join(sources))
