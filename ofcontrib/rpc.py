"""Flag resolution through a remote flagd server over the Connect protocol."""

from __future__ import annotations

import http.client
import json
import queue
import socket
import ssl
import struct
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterator

from ofcontrib.cache import CacheService
from ofcontrib.logger import ProviderLogger
from ofcontrib.model import (
    ErrorCode,
    Event,
    EventType,
    FlagService,
    FlagType,
    Reason,
    ResolutionDetails,
    ResolutionError,
)
from ofcontrib.retry import DEFAULT_DELAY, RetryCounter

REASON_CACHED = "CACHED"
CLIENT_NOT_READY_MSG = "client did not yet finish the initialization"
CONNECTION_ERROR = "connection not made"
ERR_CLIENT_NOT_READY = ResolutionError(ErrorCode.PROVIDER_NOT_READY, CLIENT_NOT_READY_MSG)

CONFIGURATION_CHANGE = "configuration_change"
PROVIDER_READY = "provider_ready"
PROVIDER_SHUTDOWN = "provider_shutdown"
KEEP_ALIVE = "keep_alive"

_PROVIDER_NAME = "flagd"
_SERVICE_PATH = "/flagd.evaluation.v1.Service"
_END_STREAM_FLAG = 0x02


class RpcCode(str, Enum):
    """Connect protocol error codes."""

    CANCELED = "canceled"
    UNKNOWN = "unknown"
    INVALID_ARGUMENT = "invalid_argument"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    FAILED_PRECONDITION = "failed_precondition"
    ABORTED = "aborted"
    OUT_OF_RANGE = "out_of_range"
    UNIMPLEMENTED = "unimplemented"
    INTERNAL = "internal"
    UNAVAILABLE = "unavailable"
    DATA_LOSS = "data_loss"
    UNAUTHENTICATED = "unauthenticated"


_HTTP_STATUS_CODES = {
    400: RpcCode.INTERNAL,
    401: RpcCode.UNAUTHENTICATED,
    403: RpcCode.PERMISSION_DENIED,
    404: RpcCode.UNIMPLEMENTED,
    429: RpcCode.UNAVAILABLE,
    502: RpcCode.UNAVAILABLE,
    503: RpcCode.UNAVAILABLE,
    504: RpcCode.UNAVAILABLE,
}


class RpcError(Exception):
    """A failed remote call, with its Connect error code."""

    def __init__(self, code: RpcCode | str, message: str = "") -> None:
        super().__init__(code, message)
        self.code = RpcCode(code)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}" if self.message else self.code.value


@dataclass
class ResolveResponse:
    """A flag value as answered by the server."""

    value: Any = None
    reason: str = ""
    variant: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamMessage:
    """One message of the server's event stream."""

    type: str
    data: dict[str, Any] | None = None


@dataclass
class RpcConfiguration:
    """How to reach the flagd server."""

    port: int = 8013
    host: str = "localhost"
    certificate_path: str = ""
    socket_path: str = ""
    tls_enabled: bool = False
    otel_interceptor: bool = False

    @property
    def url(self) -> str:
        scheme = "https" if self.tls_enabled else "http"
        return f"{scheme}://{self.host}:{self.port}"


class EvaluationClient(ABC):
    """Client of the flagd evaluation service."""

    @abstractmethod
    def resolve_boolean(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse: ...

    @abstractmethod
    def resolve_string(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse: ...

    @abstractmethod
    def resolve_float(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse: ...

    @abstractmethod
    def resolve_int(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse: ...

    @abstractmethod
    def resolve_object(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse: ...

    @abstractmethod
    def event_stream(self, stop_event: threading.Event) -> Iterator[StreamMessage]:
        """Yield stream messages until the stream ends; raise on failure."""

    def close(self) -> None:
        """Release resources held by the client."""


def handle_error(error: BaseException) -> ResolutionError:
    """Map a failed call to a resolution error."""
    if isinstance(error, ResolutionError):
        return error
    if isinstance(error, RpcError):
        if error.code is RpcCode.UNAVAILABLE:
            return ResolutionError(ErrorCode.PROVIDER_NOT_READY, CONNECTION_ERROR)
        if error.code is RpcCode.NOT_FOUND:
            return ResolutionError(ErrorCode.FLAG_NOT_FOUND, str(error))
        if error.code is RpcCode.INVALID_ARGUMENT:
            return ResolutionError(ErrorCode.TYPE_MISMATCH, str(error))
        if error.code is RpcCode.DATA_LOSS:
            return ResolutionError(ErrorCode.PARSE_ERROR, str(error))
    return ResolutionError(ErrorCode.GENERAL, str(error))


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(
        self, path: str, host: str, port: int, context: ssl.SSLContext | None = None
    ) -> None:
        super().__init__(host, port, timeout=None)
        self._path = path
        self._context = context

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.connect(self._path)
        if self._context is not None:
            sock = self._context.wrap_socket(sock, server_hostname=self.host)
        self.sock = sock


def _envelope(payload: bytes, flags: int = 0) -> bytes:
    return struct.pack(">BI", flags, len(payload)) + payload


def _error_from_response(status: int, payload: bytes) -> RpcError:
    try:
        body = json.loads(payload)
        return RpcError(RpcCode(body.get("code", "unknown")), body.get("message", ""))
    except (ValueError, TypeError, AttributeError):
        text = payload.decode("utf-8", "replace") if payload else f"HTTP status {status}"
        return RpcError(_HTTP_STATUS_CODES.get(status, RpcCode.UNKNOWN), text)


def _read_exact(response: http.client.HTTPResponse, size: int) -> bytes:
    data = response.read(size)
    if 0 < len(data) < size:
        raise RpcError(RpcCode.INTERNAL, "truncated stream message")
    return data


def _close_on_stop(
    sock: socket.socket | None, stop_event: threading.Event, finished: threading.Event
) -> None:
    while not finished.is_set():
        if stop_event.wait(0.1):
            if sock is not None:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
            return


def _as_object(value: Any) -> dict[str, Any]:
    return dict(value or {})


class _ConnectClient(EvaluationClient):
    """Speaks the Connect JSON protocol to flagd over HTTP/1.1."""

    def __init__(
        self, configuration: RpcConfiguration, context: ssl.SSLContext | None
    ) -> None:
        self.configuration = configuration
        self.context = context

    def _connection(self) -> http.client.HTTPConnection:
        cfg = self.configuration
        if cfg.socket_path:
            return _UnixHTTPConnection(cfg.socket_path, cfg.host, cfg.port, self.context)
        if cfg.tls_enabled:
            return http.client.HTTPSConnection(cfg.host, cfg.port, context=self.context)
        return http.client.HTTPConnection(cfg.host, cfg.port)

    def _unary(
        self,
        method: str,
        flag_key: str,
        context: dict[str, Any],
        convert: Callable[[Any], Any],
    ) -> ResolveResponse:
        body = json.dumps({"flagKey": flag_key, "context": context}).encode()
        connection = self._connection()
        try:
            connection.request(
                "POST",
                f"{_SERVICE_PATH}/{method}",
                body=body,
                headers={
                    "Content-Type": "application/json",
                    "Connect-Protocol-Version": "1",
                },
            )
            response = connection.getresponse()
            payload = response.read()
        except (OSError, http.client.HTTPException) as err:
            raise RpcError(RpcCode.UNAVAILABLE, str(err)) from err
        finally:
            connection.close()

        if response.status != 200:
            raise _error_from_response(response.status, payload)
        try:
            message = json.loads(payload or b"{}")
        except ValueError as err:
            raise RpcError(RpcCode.INTERNAL, f"invalid response: {err}") from err
        return ResolveResponse(
            value=convert(message.get("value")),
            reason=message.get("reason", ""),
            variant=message.get("variant", ""),
            metadata=dict(message.get("metadata") or {}),
        )

    def resolve_boolean(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse:
        return self._unary("ResolveBoolean", flag_key, context, bool)

    def resolve_string(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse:
        return self._unary("ResolveString", flag_key, context, lambda v: v or "")

    def resolve_float(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse:
        return self._unary("ResolveFloat", flag_key, context, lambda v: float(v or 0))

    def resolve_int(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse:
        return self._unary("ResolveInt", flag_key, context, lambda v: int(v or 0))

    def resolve_object(self, flag_key: str, context: dict[str, Any]) -> ResolveResponse:
        return self._unary("ResolveObject", flag_key, context, _as_object)

    def event_stream(self, stop_event: threading.Event) -> Iterator[StreamMessage]:
        connection = self._connection()
        finished = threading.Event()
        try:
            try:
                connection.request(
                    "POST",
                    f"{_SERVICE_PATH}/EventStream",
                    body=_envelope(b"{}"),
                    headers={
                        "Content-Type": "application/connect+json",
                        "Connect-Protocol-Version": "1",
                    },
                )
                threading.Thread(
                    target=_close_on_stop,
                    args=(connection.sock, stop_event, finished),
                    daemon=True,
                ).start()
                response = connection.getresponse()
            except (OSError, http.client.HTTPException) as err:
                raise RpcError(RpcCode.UNAVAILABLE, str(err)) from err

            if response.status != 200:
                raise _error_from_response(response.status, response.read())

            while True:
                try:
                    header = _read_exact(response, 5)
                    if not header:
                        raise RpcError(RpcCode.INTERNAL, "stream ended without end-of-stream message")
                    flags, length = struct.unpack(">BI", header)
                    payload = _read_exact(response, length) if length else b""
                except (OSError, http.client.HTTPException) as err:
                    raise RpcError(RpcCode.UNAVAILABLE, str(err)) from err
                try:
                    message = json.loads(payload or b"{}")
                except ValueError as err:
                    raise RpcError(RpcCode.INTERNAL, f"invalid stream message: {err}") from err
                if flags & _END_STREAM_FLAG:
                    error = message.get("error")
                    if error:
                        raise RpcError(
                            RpcCode(error.get("code", "unknown")), error.get("message", "")
                        )
                    return
                yield StreamMessage(type=message.get("type", ""), data=message.get("data"))
        finally:
            finished.set()
            connection.close()


def _new_client(configuration: RpcConfiguration) -> EvaluationClient:
    context: ssl.SSLContext | None = None
    if configuration.tls_enabled:
        context = ssl.create_default_context()
        if configuration.certificate_path:
            with open(configuration.certificate_path, encoding="utf-8") as handle:
                pem = handle.read()
            try:
                context.load_verify_locations(cadata=pem)
            except (ssl.SSLError, ValueError) as err:
                raise ValueError(
                    "error appending provider certificate file. please check and try again"
                ) from err
    return _ConnectClient(configuration, context)


def _is_float(value: Any) -> bool:
    return isinstance(value, float)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


_VALUE_CHECKS: dict[FlagType, Callable[[Any], bool]] = {
    FlagType.BOOLEAN: lambda value: isinstance(value, bool),
    FlagType.STRING: lambda value: isinstance(value, str),
    FlagType.FLOAT: _is_float,
    FlagType.INTEGER: _is_int,
    FlagType.OBJECT: lambda value: isinstance(value, dict),
}


def _reason(text: str) -> str:
    try:
        return Reason(text)
    except ValueError:
        return text


Call = Callable[[EvaluationClient, str, dict[str, Any]], ResolveResponse]


class RpcService(FlagService):
    """Resolves flags on a flagd server, caching static results."""

    def __init__(
        self,
        configuration: RpcConfiguration,
        cache: CacheService,
        logger: ProviderLogger | None = None,
        retries: int = 5,
        retry_delay: float = DEFAULT_DELAY,
        client: EvaluationClient | None = None,
        client_factory: Callable[[RpcConfiguration], EvaluationClient] = _new_client,
    ) -> None:
        self.configuration = configuration
        self.cache = cache
        self.logger = logger or ProviderLogger()
        self.retry_counter = RetryCounter(retries, retry_delay)
        self.client = client
        self._client_factory = client_factory
        self._events: queue.Queue = queue.Queue()
        self._stop: threading.Event | None = None
        self.logger.info(
            "operating in rpc mode with flags sourced from %s:%s",
            configuration.host,
            configuration.port,
        )

    def init(self) -> None:
        """Create the client and start listening to the event stream."""
        self.client = self._client_factory(self.configuration)
        self._stop = threading.Event()
        threading.Thread(
            target=self.start_event_stream, args=(self._stop,), daemon=True
        ).start()

    def shutdown(self) -> None:
        if self._stop is not None:
            self._stop.set()
        if self.client is not None:
            self.client.close()

    def events(self) -> queue.Queue:
        return self._events

    def initialised(self) -> bool:
        return self.client is not None

    def _resolve(
        self,
        flag_type: FlagType,
        call: Call,
        key: str,
        default_value: Any,
        evaluation_context: dict[str, Any] | None,
    ) -> ResolutionDetails:
        if self.cache.enabled() and self.cache.cache is not None:
            cached = self.cache.cache.get(key)
            if isinstance(cached, ResolutionDetails) and _VALUE_CHECKS[flag_type](cached.value):
                return replace(cached, reason=Reason.CACHED)

        if not self.initialised():
            return ResolutionDetails(value=default_value, error=ERR_CLIENT_NOT_READY)

        context = dict(evaluation_context or {})
        try:
            json.dumps(context)
        except (TypeError, ValueError) as err:
            self.logger.error(err, "struct from evaluation context")
            return ResolutionDetails(
                value=default_value, error=ResolutionError(ErrorCode.PARSE_ERROR, str(err))
            )

        try:
            response = call(self.client, key, context)
        except Exception as err:  # noqa: BLE001 - every failure becomes a resolution error
            return ResolutionDetails(value=default_value, error=handle_error(err))

        details = ResolutionDetails(
            value=response.value,
            reason=_reason(response.reason),
            variant=response.variant,
            flag_metadata=dict(response.metadata or {}),
        )
        if (
            self.cache.enabled()
            and self.cache.cache is not None
            and details.reason == Reason.STATIC
        ):
            self.cache.cache.add(key, details)
        return details

    def resolve_boolean(
        self, key: str, default_value: bool, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            FlagType.BOOLEAN,
            lambda client, k, c: client.resolve_boolean(k, c),
            key,
            default_value,
            evaluation_context,
        )

    def resolve_string(
        self, key: str, default_value: str, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            FlagType.STRING,
            lambda client, k, c: client.resolve_string(k, c),
            key,
            default_value,
            evaluation_context,
        )

    def resolve_float(
        self, key: str, default_value: float, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            FlagType.FLOAT,
            lambda client, k, c: client.resolve_float(k, c),
            key,
            default_value,
            evaluation_context,
        )

    def resolve_int(
        self, key: str, default_value: int, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            FlagType.INTEGER,
            lambda client, k, c: client.resolve_int(k, c),
            key,
            default_value,
            evaluation_context,
        )

    def resolve_object(
        self, key: str, default_value: Any, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            FlagType.OBJECT,
            lambda client, k, c: client.resolve_object(k, c),
            key,
            default_value,
            evaluation_context,
        )

    def start_event_stream(self, stop_event: threading.Event) -> None:
        """Listen to the event stream, reconnecting with back-off until retries run out.

        Blocks; run it on its own thread. Emits a PROVIDER_ERROR event once
        retries are exhausted.
        """
        while self.retry_counter.retry():
            self.logger.debug("connecting to event stream")
            try:
                self._stream_client(stop_event)
            except Exception:  # noqa: BLE001 - any stream failure triggers a retry
                if stop_event.is_set():
                    self.logger.debug("context cancelled, exiting")
                    return
                self.logger.warning("connection to event stream failed, attempting again")
                if self.cache.enabled() and self.cache.cache is not None:
                    self.cache.cache.purge()
            if stop_event.wait(self.retry_counter.sleep()):
                return

        self.cache.disable()
        self._events.put(
            Event(
                EventType.PROVIDER_ERROR,
                _PROVIDER_NAME,
                "grpc connection establishment failed",
            )
        )

    def _stream_client(self, stop_event: threading.Event) -> None:
        if self.client is None:
            raise RpcError(RpcCode.UNAVAILABLE, CONNECTION_ERROR)
        stream = self.client.event_stream(stop_event)
        self.logger.info("connected to event stream")
        for message in stream:
            if stop_event.is_set():
                return
            self.retry_counter.reset()
            if message.type == CONFIGURATION_CHANGE:
                self.handle_configuration_change_event(message.data)
            elif message.type == PROVIDER_READY:
                self._events.put(Event(EventType.PROVIDER_READY, _PROVIDER_NAME))
            elif message.type == PROVIDER_SHUTDOWN:
                return

    def handle_configuration_change_event(self, data: dict[str, Any] | None) -> None:
        """Evict changed flags from the cache and announce the change.

        Does nothing while caching is disabled.
        """
        if not self.cache.enabled() or self.cache.cache is None:
            return
        cache = self.cache.cache
        flags = data.get("flags") if isinstance(data, dict) else None
        if not isinstance(flags, dict):
            cache.purge()
            return

        keys = []
        for flag_key in flags:
            cache.remove(flag_key)
            keys.append(flag_key)

        self._events.put(
            Event(
                EventType.PROVIDER_CONFIGURATION_CHANGED,
                _PROVIDER_NAME,
                "flags changed",
                keys,
            )
        )