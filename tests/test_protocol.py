from __future__ import annotations

import pytest

from camserver.driver import STATUS_NOT_FOUND, STATUS_SUCCESS, STATUS_WRONG_TYPE
from camserver.protocol import (
    MalformedRequest,
    Reply,
    decode_reply,
    decode_request,
    encode_reply,
    encode_request,
    wrong_command,
)


def test_decode_verbs_without_fields() -> None:
    for verb in ("quit", "list", "start_capture_all", "stop_capture_all"):
        request = decode_request([verb.encode()])
        assert request.verb == verb
        assert request.device_id is None
        assert request.command is None


def test_decode_get_and_set() -> None:
    request = decode_request(encode_request("get", "camA", 104))
    assert request.device_id == "camA"
    assert request.command == "104"
    assert request.command_code == 104
    assert request.args == []

    request = decode_request(encode_request("set", "camA", 200, "640", "480"))
    assert request.command_code == 200
    assert request.args == ["640", "480"]


def test_non_numeric_command_code_decodes_to_none() -> None:
    request = decode_request(encode_request("get", "camA", "exposure"))
    assert request.command == "exposure"
    assert request.command_code is None


def test_missing_fields_keep_what_was_readable() -> None:
    with pytest.raises(MalformedRequest) as excinfo:
        decode_request(encode_request("set", "camA", 104))
    partial = excinfo.value.request
    assert partial.verb == "set"
    assert partial.device_id == "camA"
    assert partial.command == "104"

    with pytest.raises(MalformedRequest):
        decode_request(encode_request("start_capture"))


@pytest.mark.parametrize(
    "frames",
    [[], [b"\xff\xfe"], [b"reboot"], [b"get", b"\xff"]],
)
def test_undecodable_messages_raise(frames: list[bytes]) -> None:
    with pytest.raises(MalformedRequest):
        decode_request(frames)


def test_encode_reply_field_order() -> None:
    reply = Reply(verb="get", device_id="camA", command="104", result="5000.000000")
    assert encode_reply(reply) == [b"camA", b"104", b"get", b"5000.000000", b"0", b"ACK"]

    reply = Reply(verb="start_capture", device_id="camZ", status=STATUS_NOT_FOUND)
    assert encode_reply(reply) == [b"camZ", b"start_capture", b"None", b"-3", b"NAC"]

    assert encode_reply(Reply(verb="list", result="[]")) == [b"list", b"[]", b"0", b"ACK"]


def test_decode_reply_reads_echoed_fields() -> None:
    reply = decode_reply([b"camA", b"104", b"get", b"5000.000000", b"0", b"ACK"])
    assert reply.device_id == "camA"
    assert reply.command == "104"
    assert reply.result == "5000.000000"
    assert reply.status == STATUS_SUCCESS
    assert reply.ok

    with pytest.raises(ValueError):
        decode_reply([b"get", b"None", b"-10", b"ACK"])
    with pytest.raises(ValueError):
        decode_reply([b"get", b"None"])


def test_wrong_command_echoes_request() -> None:
    request = decode_request(encode_request("get", "camA", 999))
    reply = wrong_command(request)
    assert reply.status == STATUS_WRONG_TYPE
    assert reply.ack == "NAC"
    assert reply.device_id == "camA"
    assert reply.command == "999"
