from __future__ import annotations

import argparse
import logging
import signal
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import zmq

from .commands import CommandRegistry, build_command_registry
from .driver import (
    STATUS_INTERNAL,
    STATUS_NOT_FOUND,
    STATUS_WRONG_TYPE,
    BackendUnavailableError,
    DeviceDriver,
    DriverError,
)
from .dummy_driver import DummyDriver, DummyDriverConfig
from .hasher import hash_identifier
from .logging_config import configure_logging
from .protocol import (
    VERB_GET,
    VERB_LIST,
    VERB_QUIT,
    VERB_SET,
    VERB_START_CAPTURE,
    VERB_START_CAPTURE_ALL,
    VERB_STOP_CAPTURE,
    VERB_STOP_CAPTURE_ALL,
    MalformedRequest,
    Reply,
    Request,
    decode_request,
    encode_reply,
    wrong_command,
)
from .registry import DeviceRegistry
from .session import DeviceSession
from .signal_driver import SignalDriver, open_signal_driver


logger = logging.getLogger(__name__)

STATE_RUNNING = "RUNNING"
STATE_SHUTTING_DOWN = "SHUTTING_DOWN"
STATE_STOPPED = "STOPPED"

PORT_MIN = 5000
PORT_MAX = 65535
DEFAULT_PORT = 5555
POLL_TIMEOUT_MS = 1000
REBIND_ATTEMPTS = 20
REBIND_DELAY_S = 0.05


@dataclass
class ServerConfig:
    camera_id: str | None = None
    dio_unit: int = 0
    port: int = DEFAULT_PORT
    bind_host: str = "*"
    backend: str = "dummy"
    signal_backend: str = "dummy"
    dummy_devices: tuple[str, ...] = ("camA", "camB")
    buffer_count: int = 5
    poll_timeout_ms: int = POLL_TIMEOUT_MS
    skip_failed_devices: bool = False
    log_level: str = "INFO"

    @property
    def endpoint(self) -> str:
        return f"tcp://{self.bind_host}:{self.port}"


class ProtocolServer:
    """Single-threaded request/reply loop over one ZeroMQ REP socket.

    `shutdown_event` is the cancellation token: it is checked once per poll
    iteration, so shutdown latency is bounded by the poll timeout. All
    resources are released by `close()`.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        commands: CommandRegistry | None = None,
        *,
        endpoint: str = f"tcp://*:{DEFAULT_PORT}",
        poll_timeout_ms: int = POLL_TIMEOUT_MS,
        shutdown_event: threading.Event | None = None,
        driver: DeviceDriver | None = None,
        signal_driver: SignalDriver | None = None,
        context: zmq.Context | None = None,
    ):
        self._registry: DeviceRegistry = registry
        self._commands: CommandRegistry = commands if commands is not None else build_command_registry()
        self._endpoint: str = endpoint
        self._poll_timeout_ms: int = int(poll_timeout_ms)
        self._shutdown: threading.Event = shutdown_event if shutdown_event is not None else threading.Event()
        self._driver: DeviceDriver | None = driver
        self._signal_driver: SignalDriver | None = signal_driver

        self._own_context: bool = context is None
        self._context: zmq.Context | None = context
        self._socket: zmq.Socket | None = None
        self._poller: zmq.Poller | None = None
        self._state: str = STATE_RUNNING
        self._close_lock: threading.Lock = threading.Lock()

        self._handlers: dict[str, Callable[[Request, Reply], None]] = {
            VERB_QUIT: self._handle_quit,
            VERB_LIST: self._handle_list,
            VERB_START_CAPTURE_ALL: self._handle_start_capture_all,
            VERB_STOP_CAPTURE_ALL: self._handle_stop_capture_all,
            VERB_START_CAPTURE: self._handle_start_capture,
            VERB_STOP_CAPTURE: self._handle_stop_capture,
            VERB_GET: self._handle_command,
            VERB_SET: self._handle_command,
        }

    @property
    def state(self) -> str:
        return self._state

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown

    def bind(self) -> None:
        """Bind the REP endpoint; a zmq.ZMQError here is fatal to the caller."""
        if self._socket is not None:
            return
        if self._context is None:
            self._context = zmq.Context()
        sock = self._context.socket(zmq.REP)
        sock.setsockopt(zmq.LINGER, 0)
        try:
            sock.bind(self._endpoint)
        except zmq.ZMQError:
            sock.close(linger=0)
            raise
        self._socket = sock
        self._poller = zmq.Poller()
        self._poller.register(sock, zmq.POLLIN)
        logger.info("Listening on %s", self._endpoint)

    def serve_forever(self) -> None:
        self.bind()
        try:
            while not self._shutdown.is_set():
                self.poll_once()
        finally:
            self.close()

    def poll_once(self) -> bool:
        """Wait up to the poll timeout for one request; answer it. True if one was handled."""
        sock = self._socket
        poller = self._poller
        if sock is None or poller is None:
            raise RuntimeError("server socket is not bound")

        events = dict(poller.poll(self._poll_timeout_ms))
        if sock not in events:
            return False

        frames = sock.recv_multipart()
        reply = self.handle_request(frames)
        try:
            sock.send_multipart(encode_reply(reply))
        except zmq.ZMQError as exc:
            # a REP socket stays in its send state after a failed send
            logger.error("Failed to send reply to %s: %s; rebinding %s", reply.verb, exc, self._endpoint)
            self._rebind()
        return True

    def _rebind(self, attempts: int = REBIND_ATTEMPTS) -> None:
        """Replace the REP socket; a ZMQError after the last attempt ends the loop."""
        self._release_socket()
        for attempt in range(1, attempts + 1):
            try:
                self.bind()
                return
            except zmq.ZMQError as exc:
                if attempt == attempts:
                    logger.error("Could not rebind %s: %s", self._endpoint, exc)
                    raise
                time.sleep(REBIND_DELAY_S)

    def _release_socket(self) -> None:
        if self._socket is not None:
            if self._poller is not None:
                self._poller.unregister(self._socket)
            self._socket.close(linger=0)
        self._socket = None
        self._poller = None

    def request_shutdown(self) -> None:
        self._shutdown.set()
        if self._state == STATE_RUNNING:
            self._state = STATE_SHUTTING_DOWN

    def close(self) -> None:
        with self._close_lock:
            if self._state == STATE_STOPPED:
                return
            self._state = STATE_SHUTTING_DOWN
            self._shutdown.set()

            self._registry.close_all()
            if self._driver is not None:
                try:
                    self._driver.shutdown()
                except DriverError as exc:
                    logger.warning("Device driver shutdown failed: %s", exc)
            if self._signal_driver is not None:
                try:
                    self._signal_driver.close()
                except DriverError as exc:
                    logger.warning("Signal driver close failed: %s", exc)

            self._release_socket()
            if self._own_context and self._context is not None:
                self._context.term()
            self._context = None
            self._state = STATE_STOPPED
            logger.info("Server stopped")

    def handle_request(self, frames: Sequence[bytes]) -> Reply:
        try:
            request = decode_request(frames)
        except MalformedRequest as exc:
            logger.info("Rejected request: %s", exc)
            return wrong_command(exc.request)

        logger.debug("Request %s device=%s command=%s args=%s", request.verb, request.device_id, request.command, request.args)
        reply = Reply.for_request(request)
        handler = self._handlers.get(request.verb)
        if handler is None:
            reply.status = STATUS_WRONG_TYPE
            return reply

        try:
            handler(request, reply)
        except DriverError as exc:
            logger.info("%s failed: %s", request.verb, exc)
            reply.status = exc.status
        except Exception:
            logger.exception("%s raised", request.verb)
            reply.status = STATUS_INTERNAL
        return reply

    def _resolve(self, request: Request) -> DeviceSession | None:
        if request.device_id is None:
            return None
        return self._registry.lookup(hash_identifier(request.device_id))

    def _handle_quit(self, request: Request, reply: Reply) -> None:
        logger.info("Quit requested")
        self.request_shutdown()

    def _handle_list(self, request: Request, reply: Reply) -> None:
        reply.result = "[" + ", ".join(str(key) for key in self._registry.keys()) + "]"

    # both stop at the first failing session
    def _handle_start_capture_all(self, request: Request, reply: Reply) -> None:
        for session in self._registry:
            session.start_capture()

    def _handle_stop_capture_all(self, request: Request, reply: Reply) -> None:
        for session in self._registry:
            session.stop_capture()

    def _handle_start_capture(self, request: Request, reply: Reply) -> None:
        session = self._resolve(request)
        if session is None:
            reply.status = STATUS_NOT_FOUND
            return
        session.start_capture()

    def _handle_stop_capture(self, request: Request, reply: Reply) -> None:
        session = self._resolve(request)
        if session is None:
            reply.status = STATUS_NOT_FOUND
            return
        session.stop_capture()

    def _handle_command(self, request: Request, reply: Reply) -> None:
        session = self._resolve(request)
        if session is None:
            reply.status = STATUS_NOT_FOUND
            return
        code = request.command_code
        if code is None:
            reply.status = STATUS_WRONG_TYPE
            return
        reply.result, reply.status = self._commands.dispatch(request.verb, session, code, request.args)


def create_driver(config: ServerConfig) -> DeviceDriver:
    if config.backend == "dummy":
        return DummyDriver(DummyDriverConfig(identifiers=tuple(config.dummy_devices)))
    if config.backend == "vimba":
        from .vimba_driver import VimbaDriver

        return VimbaDriver()
    raise BackendUnavailableError(f"unknown_backend: {config.backend}")


def parse_args(argv: Sequence[str] | None = None) -> ServerConfig:
    parser = argparse.ArgumentParser(description="Camera control server with frame-synchronised digital output")
    _ = parser.add_argument("-c", "--camera-id", default=None, help="Only serve the camera with this ID")
    _ = parser.add_argument("-a", "--dio-unit", type=int, default=0, help="Digital I/O unit number")
    _ = parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Control port ({PORT_MIN}-{PORT_MAX}, default {DEFAULT_PORT})",
    )
    _ = parser.add_argument("--bind-host", default="*", help="Interface to bind (default: all)")
    _ = parser.add_argument(
        "--backend",
        choices=("dummy", "vimba"),
        default="dummy",
        help="Camera driver to use (default: dummy)",
    )
    _ = parser.add_argument(
        "--signal-backend",
        choices=("dummy", "lgpio", "none"),
        default="dummy",
        help="Digital output driver (default: dummy)",
    )
    _ = parser.add_argument(
        "--dummy-devices",
        default="camA,camB",
        help="Comma separated camera IDs for the dummy backend",
    )
    _ = parser.add_argument("--buffer-count", type=int, default=5, help="Frame buffers per camera")
    _ = parser.add_argument(
        "--poll-timeout-ms",
        type=int,
        default=POLL_TIMEOUT_MS,
        help="Request poll timeout in milliseconds",
    )
    _ = parser.add_argument(
        "--skip-failed-devices",
        action="store_true",
        help="Skip cameras that fail to open instead of exiting",
    )
    _ = parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

    namespace = parser.parse_args(argv)

    port = int(namespace.port)
    if port < PORT_MIN or port > PORT_MAX:
        raise SystemExit(f"--port invalid: {port} (must be {PORT_MIN}-{PORT_MAX})")
    if namespace.buffer_count <= 0:
        raise SystemExit("--buffer-count must be positive")
    if namespace.poll_timeout_ms <= 0:
        raise SystemExit("--poll-timeout-ms must be positive")

    dummy_devices = tuple(part.strip() for part in str(namespace.dummy_devices).split(",") if part.strip())

    return ServerConfig(
        camera_id=namespace.camera_id or None,
        dio_unit=int(namespace.dio_unit),
        port=port,
        bind_host=str(namespace.bind_host),
        backend=str(namespace.backend),
        signal_backend=str(namespace.signal_backend),
        dummy_devices=dummy_devices,
        buffer_count=int(namespace.buffer_count),
        poll_timeout_ms=int(namespace.poll_timeout_ms),
        skip_failed_devices=bool(namespace.skip_failed_devices),
        log_level=str(namespace.log_level),
    )


def build_server(config: ServerConfig, shutdown_event: threading.Event | None = None) -> ProtocolServer:
    """Open drivers and devices; raises BackendUnavailableError or DriverError on fatal startup failures."""
    signal_driver = open_signal_driver(config.signal_backend, config.dio_unit)
    driver: DeviceDriver | None = None
    try:
        driver = create_driver(config)
        registry = DeviceRegistry.enumerate_and_open(
            driver,
            signal_driver,
            device_filter=config.camera_id,
            buffer_count=config.buffer_count,
            skip_failed=config.skip_failed_devices,
        )
    except (BackendUnavailableError, DriverError):
        if driver is not None:
            driver.shutdown()
        if signal_driver is not None:
            signal_driver.close()
        raise

    logger.info("Serving %d camera(s)", len(registry))
    return ProtocolServer(
        registry,
        build_command_registry(),
        endpoint=config.endpoint,
        poll_timeout_ms=config.poll_timeout_ms,
        shutdown_event=shutdown_event,
        driver=driver,
        signal_driver=signal_driver,
    )


def main(argv: Sequence[str] | None = None) -> int:
    config = parse_args(argv)
    configure_logging(config.log_level)

    shutdown_event = threading.Event()

    def _on_signal(signum: int, _frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    _ = signal.signal(signal.SIGINT, _on_signal)
    _ = signal.signal(signal.SIGTERM, _on_signal)

    try:
        server = build_server(config, shutdown_event)
    except BackendUnavailableError as exc:
        logger.error("Camera backend unavailable: %s", exc)
        return 1
    except DriverError as exc:
        logger.error("Camera startup failed: %s", exc)
        return 1

    try:
        server.bind()
    except zmq.ZMQError as exc:
        logger.error("Could not bind %s: %s", config.endpoint, exc)
        server.close()
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
