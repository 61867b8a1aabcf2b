from __future__ import annotations

import logging
from collections.abc import Iterator

from .driver import DeviceDriver, DriverError
from .session import DeviceSession
from .signal_driver import SignalDriver


logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Sessions keyed by identifier hash, fixed once enumeration is done."""

    def __init__(self, sessions: list[DeviceSession] | None = None):
        self._sessions: dict[int, DeviceSession] = {}
        for session in sessions or []:
            self._sessions[session.key] = session

    @classmethod
    def enumerate_and_open(
        cls,
        driver: DeviceDriver,
        signal: SignalDriver | None = None,
        *,
        device_filter: str | None = None,
        buffer_count: int = 5,
        skip_failed: bool = False,
    ) -> DeviceRegistry:
        sessions: list[DeviceSession] = []
        try:
            for index, info in enumerate(driver.list_devices()):
                if device_filter and info.identifier != device_filter:
                    continue
                logger.info(
                    "Camera %d: id=%s name=%s model=%s serial=%s",
                    index,
                    info.identifier,
                    info.name,
                    info.model,
                    info.serial,
                )
                try:
                    session = DeviceSession.open(driver, info, signal, buffer_count)
                except DriverError as exc:
                    if not skip_failed:
                        logger.error("Failed to open camera %s: %s", info.identifier, exc)
                        raise
                    logger.warning("Skipping camera %s, open failed: %s", info.identifier, exc)
                    continue
                sessions.append(session)
        except DriverError:
            for session in sessions:
                session.close()
            raise

        if device_filter and not sessions:
            logger.warning("No camera matched %s", device_filter)
        return cls(sessions)

    def lookup(self, key: int) -> DeviceSession | None:
        return self._sessions.get(key)

    def all(self) -> list[tuple[int, DeviceSession]]:
        return list(self._sessions.items())

    def keys(self) -> list[int]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[DeviceSession]:
        return iter(list(self._sessions.values()))

    def close_all(self) -> None:
        for session in self:
            try:
                session.close()
            except DriverError as exc:
                logger.warning("Closing %s failed: %s", session.info.identifier, exc)
