from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

import zmq

from .protocol import (
    VERB_GET,
    VERB_LIST,
    VERB_QUIT,
    VERB_SET,
    VERB_START_CAPTURE,
    VERB_START_CAPTURE_ALL,
    VERB_STOP_CAPTURE,
    VERB_STOP_CAPTURE_ALL,
    Reply,
    decode_reply,
    encode_request,
)


def send_request(
    endpoint: str,
    verb: str,
    *fields: object,
    timeout: float = 5.0,
    context: zmq.Context | None = None,
) -> Reply:
    """Send one request on a fresh REQ socket and wait for its reply.

    Raises TimeoutError when no reply arrives within `timeout` seconds.
    """
    ctx = context if context is not None else zmq.Context.instance()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, int(timeout * 1000))
    sock.setsockopt(zmq.SNDTIMEO, int(timeout * 1000))
    try:
        sock.connect(endpoint)
        try:
            sock.send_multipart(encode_request(verb, *fields))
            frames = sock.recv_multipart()
        except zmq.Again as exc:
            raise TimeoutError(f"no reply from {endpoint} within {timeout}s") from exc
    finally:
        sock.close(linger=0)
    return decode_reply(frames)


def list_devices(endpoint: str, timeout: float = 5.0) -> list[int]:
    reply = send_request(endpoint, VERB_LIST, timeout=timeout)
    text = reply.result.strip().lstrip("[").rstrip("]")
    return [int(part) for part in text.split(",") if part.strip()]


def start_capture(endpoint: str, device_id: str, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_START_CAPTURE, device_id, timeout=timeout)


def stop_capture(endpoint: str, device_id: str, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_STOP_CAPTURE, device_id, timeout=timeout)


def start_capture_all(endpoint: str, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_START_CAPTURE_ALL, timeout=timeout)


def stop_capture_all(endpoint: str, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_STOP_CAPTURE_ALL, timeout=timeout)


def get_param(endpoint: str, device_id: str, code: int, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_GET, device_id, code, timeout=timeout)


def set_param(endpoint: str, device_id: str, code: int, *values: object, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_SET, device_id, code, *values, timeout=timeout)


def quit_server(endpoint: str, timeout: float = 5.0) -> Reply:
    return send_request(endpoint, VERB_QUIT, timeout=timeout)


def _build_cli_and_run(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="camserver.client", description="Camera control client")
    parser.add_argument("--endpoint", default="tcp://127.0.0.1:5555", help="Server endpoint")
    parser.add_argument("--timeout", type=float, default=5.0, help="Reply timeout in seconds")

    sub = parser.add_subparsers(dest="cmd", required=True)
    sub.add_parser(VERB_LIST, help="List camera keys")
    sub.add_parser(VERB_START_CAPTURE_ALL, help="Start capture on every camera")
    sub.add_parser(VERB_STOP_CAPTURE_ALL, help="Stop capture on every camera")
    sub.add_parser(VERB_QUIT, help="Stop the server")

    for verb in (VERB_START_CAPTURE, VERB_STOP_CAPTURE):
        verb_p = sub.add_parser(verb, help=f"{verb} on one camera")
        verb_p.add_argument("device_id", help="Camera ID")

    get_p = sub.add_parser(VERB_GET, help="Read a parameter")
    get_p.add_argument("device_id", help="Camera ID")
    get_p.add_argument("code", type=int, help="Command code")

    set_p = sub.add_parser(VERB_SET, help="Write a parameter")
    set_p.add_argument("device_id", help="Camera ID")
    set_p.add_argument("code", type=int, help="Command code")
    set_p.add_argument("values", nargs="+", help="One value, or two for size/offset")

    args = parser.parse_args(argv)

    fields: list[object] = []
    if args.cmd in (VERB_START_CAPTURE, VERB_STOP_CAPTURE, VERB_GET, VERB_SET):
        fields.append(args.device_id)
    if args.cmd in (VERB_GET, VERB_SET):
        fields.append(args.code)
    if args.cmd == VERB_SET:
        fields.extend(args.values)

    try:
        reply = send_request(args.endpoint, args.cmd, *fields, timeout=args.timeout)
    except (TimeoutError, ValueError, zmq.ZMQError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)

    print(f"{reply.verb} {reply.result} {reply.status} {reply.ack}")
    sys.exit(0 if reply.ok else 1)


if __name__ == "__main__":
    _build_cli_and_run()
