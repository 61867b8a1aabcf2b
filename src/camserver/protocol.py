"""
Wire format of the control channel.

Requests and replies are multipart messages of UTF-8 string frames.

Request frames, by verb:
    quit | list | start_capture_all | stop_capture_all
    start_capture <device-id> | stop_capture <device-id>
    get <device-id> <command-code>
    set <device-id> <command-code> <argument> [<argument>]

Reply frames:
    [<device-id>] [<command-code>] <verb> <result> <status> <ACK|NAC>
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .driver import STATUS_SUCCESS, STATUS_WRONG_TYPE


VERB_QUIT = "quit"
VERB_LIST = "list"
VERB_START_CAPTURE_ALL = "start_capture_all"
VERB_STOP_CAPTURE_ALL = "stop_capture_all"
VERB_START_CAPTURE = "start_capture"
VERB_STOP_CAPTURE = "stop_capture"
VERB_GET = "get"
VERB_SET = "set"

# verb -> number of frames after the verb that must be present
VERB_FIELDS: dict[str, int] = {
    VERB_QUIT: 0,
    VERB_LIST: 0,
    VERB_START_CAPTURE_ALL: 0,
    VERB_STOP_CAPTURE_ALL: 0,
    VERB_START_CAPTURE: 1,
    VERB_STOP_CAPTURE: 1,
    VERB_GET: 2,
    VERB_SET: 3,
}

ACK = "ACK"
NAC = "NAC"
NO_RESULT = "None"


@dataclass
class Request:
    verb: str
    device_id: str | None = None
    command: str | None = None
    args: list[str] = field(default_factory=list)

    @property
    def command_code(self) -> int | None:
        if self.command is None:
            return None
        try:
            return int(self.command.strip(), 10)
        except ValueError:
            return None


@dataclass
class Reply:
    verb: str
    device_id: str | None = None
    command: str | None = None
    result: str = NO_RESULT
    status: int = STATUS_SUCCESS

    @property
    def ack(self) -> str:
        return ACK if self.status == STATUS_SUCCESS else NAC

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def for_request(cls, request: Request) -> Reply:
        return cls(verb=request.verb, device_id=request.device_id, command=request.command)


class MalformedRequest(ValueError):
    """The message could not be decoded; `request` holds whatever fields were readable."""

    def __init__(self, reason: str, request: Request):
        super().__init__(reason)
        self.request: Request = request


def decode_request(frames: Sequence[bytes]) -> Request:
    try:
        fields = [frame.decode("utf-8") for frame in frames]
    except UnicodeDecodeError as exc:
        raise MalformedRequest("invalid_utf8", Request(verb="")) from exc

    if not fields:
        raise MalformedRequest("empty_message", Request(verb=""))

    verb, rest = fields[0], fields[1:]
    request = Request(verb=verb)
    if verb not in VERB_FIELDS:
        raise MalformedRequest(f"unknown_verb: {verb}", request)

    if VERB_FIELDS[verb] >= 1 and rest:
        request.device_id = rest[0]
    if VERB_FIELDS[verb] >= 2 and len(rest) >= 2:
        request.command = rest[1]
    if verb == VERB_SET:
        request.args = list(rest[2:])

    if len(rest) < VERB_FIELDS[verb]:
        raise MalformedRequest(f"missing_fields: {verb}", request)
    return request


def encode_reply(reply: Reply) -> list[bytes]:
    fields: list[str] = []
    if reply.device_id is not None:
        fields.append(reply.device_id)
        if reply.command is not None:
            fields.append(reply.command)
    fields.extend([reply.verb, reply.result, str(int(reply.status)), reply.ack])
    return [text.encode("utf-8") for text in fields]


def encode_request(verb: str, *fields: object) -> list[bytes]:
    return [str(part).encode("utf-8") for part in (verb, *fields)]


def decode_reply(frames: Sequence[bytes]) -> Reply:
    """Client-side parse; device-id and command-code are echoed ahead of the verb."""
    fields = [frame.decode("utf-8") for frame in frames]
    if len(fields) < 4:
        raise ValueError(f"short reply: {fields!r}")
    verb, result, status_text, ack = fields[-4:]
    echoed = fields[:-4]
    try:
        status = int(status_text)
    except ValueError as exc:
        raise ValueError(f"bad status in reply: {status_text!r}") from exc
    reply = Reply(
        verb=verb,
        device_id=echoed[0] if echoed else None,
        command=echoed[1] if len(echoed) > 1 else None,
        result=result,
        status=status,
    )
    if reply.ack != ack:
        raise ValueError(f"ack tag {ack!r} does not match status {status}")
    return reply


def wrong_command(request: Request) -> Reply:
    reply = Reply.for_request(request)
    reply.status = STATUS_WRONG_TYPE
    return reply
