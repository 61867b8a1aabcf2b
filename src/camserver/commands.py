from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from .driver import (
    STATUS_DEVICE_NOT_OPEN,
    STATUS_INTERNAL,
    STATUS_SUCCESS,
    STATUS_WRONG_TYPE,
    DriverError,
)
from .protocol import NO_RESULT
from .session import DeviceSession


logger = logging.getLogger(__name__)

CMD_SIGNAL_BIT = 10
CMD_IMAGE_FORMAT = 100
CMD_SENSOR_BIT_DEPTH = 101
CMD_TRIGGER_LINE = 102
CMD_TRIGGER_SOURCE = 103
CMD_EXPOSURE_US = 104
CMD_FRAME_RATE = 105
CMD_FRAME_RATE_AUTO = 106
CMD_IMAGE_SIZE = 200
CMD_IMAGE_OFFSET = 201
CMD_SENSOR_SIZE = 202
CMD_THROUGHPUT_LIMIT = 300
CMD_THROUGHPUT_LIMIT_RANGE = 301


class ValueKind(enum.Enum):
    STRING = "string"
    INT = "int64"
    FLOAT = "float64"
    BOOL = "bool"
    SPECIAL = "special"


Getter = Callable[[DeviceSession], object]
Setter = Callable[[DeviceSession, tuple], None]


class ArgumentError(ValueError):
    pass


@dataclass(frozen=True)
class CommandDescriptor:
    code: int
    name: str
    kind: ValueKind
    getter: Getter | None
    setter: Setter | None
    formatter: Callable[[object], str]
    parser: Callable[[Sequence[str]], tuple]
    arity: int = 1


def format_bool(value: object) -> str:
    return "True" if value else "False"


def format_float(value: object) -> str:
    return f"{float(value):.6f}"


def format_pair(value: object) -> str:
    first, second = value
    return f"{int(first)} x {int(second)}"


def format_range(value: object) -> str:
    low, high = value
    return f"[{int(low)}, {int(high)}]"


def _parse_int(text: str) -> int:
    try:
        return int(text.strip(), 10)
    except ValueError as exc:
        raise ArgumentError(f"not an integer: {text!r}") from exc


def _parse_float(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError as exc:
        raise ArgumentError(f"not a number: {text!r}") from exc


def parse_bool(text: str) -> bool:
    return text.strip().lower() == "true"


_PARSERS: dict[ValueKind, Callable[[Sequence[str]], tuple]] = {
    ValueKind.STRING: lambda args: (args[0],),
    ValueKind.INT: lambda args: (_parse_int(args[0]),),
    ValueKind.FLOAT: lambda args: (_parse_float(args[0]),),
    ValueKind.BOOL: lambda args: (parse_bool(args[0]),),
}

_FORMATTERS: dict[ValueKind, Callable[[object], str]] = {
    ValueKind.STRING: str,
    ValueKind.INT: lambda value: str(int(value)),
    ValueKind.FLOAT: format_float,
    ValueKind.BOOL: format_bool,
}


def _on_handle(method: str) -> Callable[..., object]:
    def call(session: DeviceSession, *args: object) -> object:
        handle = session.handle
        if handle is None:
            raise DriverError(STATUS_DEVICE_NOT_OPEN, f"{session.info.identifier} is not open")
        return getattr(handle, method)(*args)

    return call


def _setter(method: str) -> Setter:
    call = _on_handle(method)
    return lambda session, args: call(session, *args)


def _parse_int_pair(args: Sequence[str]) -> tuple[int, int]:
    return _parse_int(args[0]), _parse_int(args[1])


def _get_signal_bit(session: DeviceSession) -> object:
    return session.signal_bit


def _set_signal_bit(session: DeviceSession, args: tuple) -> None:
    session.bind_signal_bit(int(args[0]))


class CommandRegistry:
    """Immutable code -> descriptor table; build one with `CommandRegistryBuilder`."""

    def __init__(self, descriptors: Mapping[int, CommandDescriptor]):
        self._descriptors: Mapping[int, CommandDescriptor] = MappingProxyType(dict(descriptors))

    def __contains__(self, code: object) -> bool:
        return code in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def get_descriptor(self, code: int) -> CommandDescriptor | None:
        return self._descriptors.get(code)

    @property
    def descriptors(self) -> Mapping[int, CommandDescriptor]:
        return self._descriptors

    def dispatch(
        self,
        kind: str,
        session: DeviceSession,
        code: int,
        args: Sequence[str] = (),
    ) -> tuple[str, int]:
        if kind == "get":
            return self.dispatch_get(session, code)
        if kind == "set":
            return self.dispatch_set(session, code, args)
        return NO_RESULT, STATUS_WRONG_TYPE

    def dispatch_get(self, session: DeviceSession, code: int) -> tuple[str, int]:
        descriptor = self._descriptors.get(code)
        if descriptor is None or descriptor.getter is None:
            return NO_RESULT, STATUS_WRONG_TYPE
        try:
            value = descriptor.getter(session)
        except DriverError as exc:
            logger.info("get %s on %s failed: %s", descriptor.name, session.info.identifier, exc)
            return NO_RESULT, exc.status
        except Exception:
            logger.exception("get %s on %s raised", descriptor.name, session.info.identifier)
            return NO_RESULT, STATUS_INTERNAL
        return descriptor.formatter(value), STATUS_SUCCESS

    def dispatch_set(self, session: DeviceSession, code: int, args: Sequence[str]) -> tuple[str, int]:
        descriptor = self._descriptors.get(code)
        if descriptor is None or descriptor.setter is None:
            return NO_RESULT, STATUS_WRONG_TYPE
        if len(args) < descriptor.arity:
            return NO_RESULT, STATUS_WRONG_TYPE
        try:
            parsed = descriptor.parser(args)
        except ArgumentError as exc:
            logger.info("set %s rejected: %s", descriptor.name, exc)
            return NO_RESULT, STATUS_WRONG_TYPE
        try:
            descriptor.setter(session, parsed)
        except DriverError as exc:
            logger.info("set %s on %s failed: %s", descriptor.name, session.info.identifier, exc)
            return NO_RESULT, exc.status
        except Exception:
            logger.exception("set %s on %s raised", descriptor.name, session.info.identifier)
            return NO_RESULT, STATUS_INTERNAL
        return NO_RESULT, STATUS_SUCCESS


class CommandRegistryBuilder:
    def __init__(self) -> None:
        self._descriptors: dict[int, CommandDescriptor] = {}

    def add(self, descriptor: CommandDescriptor) -> CommandRegistryBuilder:
        if descriptor.code in self._descriptors:
            raise ValueError(f"duplicate command code: {descriptor.code}")
        self._descriptors[descriptor.code] = descriptor
        return self

    def add_feature(self, code: int, name: str, kind: ValueKind, accessor: str) -> CommandRegistryBuilder:
        """Scalar feature read and written through `get_<accessor>`/`set_<accessor>`."""
        return self.add(
            CommandDescriptor(
                code=code,
                name=name,
                kind=kind,
                getter=_on_handle(f"get_{accessor}"),
                setter=_setter(f"set_{accessor}"),
                formatter=_FORMATTERS[kind],
                parser=_PARSERS[kind],
            )
        )

    def add_pair(
        self,
        code: int,
        name: str,
        accessor: str,
        *,
        writable: bool = True,
        formatter: Callable[[object], str] = format_pair,
    ) -> CommandRegistryBuilder:
        return self.add(
            CommandDescriptor(
                code=code,
                name=name,
                kind=ValueKind.SPECIAL,
                getter=_on_handle(f"get_{accessor}"),
                setter=_setter(f"set_{accessor}") if writable else None,
                formatter=formatter,
                parser=_parse_int_pair,
                arity=2,
            )
        )

    def build(self) -> CommandRegistry:
        return CommandRegistry(self._descriptors)


def build_command_registry() -> CommandRegistry:
    return (
        CommandRegistryBuilder()
        .add_feature(CMD_IMAGE_FORMAT, "image_format", ValueKind.STRING, "image_format")
        .add_feature(CMD_SENSOR_BIT_DEPTH, "sensor_bit_depth", ValueKind.STRING, "sensor_bit_depth")
        .add_feature(CMD_TRIGGER_LINE, "trigline", ValueKind.STRING, "trigger_line")
        .add_feature(CMD_TRIGGER_SOURCE, "trigline_src", ValueKind.STRING, "trigger_source")
        .add_feature(CMD_EXPOSURE_US, "exposure_us", ValueKind.FLOAT, "exposure_us")
        .add_feature(CMD_FRAME_RATE, "acq_framerate", ValueKind.FLOAT, "frame_rate")
        .add_feature(CMD_FRAME_RATE_AUTO, "acq_framerate_auto", ValueKind.BOOL, "frame_rate_auto")
        .add_feature(CMD_THROUGHPUT_LIMIT, "throughput_limit", ValueKind.INT, "throughput_limit")
        .add_pair(CMD_IMAGE_SIZE, "image_size", "image_size")
        .add_pair(CMD_IMAGE_OFFSET, "image_ofst", "image_offset")
        .add_pair(CMD_SENSOR_SIZE, "sensor_size", "sensor_size", writable=False)
        .add_pair(
            CMD_THROUGHPUT_LIMIT_RANGE,
            "throughput_limit_range",
            "throughput_limit_range",
            writable=False,
            formatter=format_range,
        )
        .add(
            CommandDescriptor(
                code=CMD_SIGNAL_BIT,
                name="signal_bit",
                kind=ValueKind.SPECIAL,
                getter=_get_signal_bit,
                setter=_set_signal_bit,
                formatter=lambda value: str(int(value)),
                parser=_PARSERS[ValueKind.INT],
            )
        )
        .build()
    )
