"""OpenFeature provider resolving flags through flagd."""

from __future__ import annotations

import queue
import threading
from typing import Any, Mapping

from ofcontrib.cache import CacheService, CacheType
from ofcontrib.configuration import (
    DEFAULT_IN_PROCESS_PORT,
    DEFAULT_RPC_PORT,
    ProviderConfiguration,
    ResolverType,
    default_configuration,
)
from ofcontrib.in_process import Evaluator, FlagSync, InProcessConfiguration, InProcessService
from ofcontrib.logger import ProviderLogger
from ofcontrib.model import (
    Event,
    EventType,
    FlagService,
    Metadata,
    ProviderState,
    ResolutionDetails,
)
from ofcontrib.rpc import ERR_CLIENT_NOT_READY, RpcConfiguration, RpcService

_POLL_INTERVAL = 0.05


def _event_type(event: Event) -> EventType | None:
    match event:
        case Event(event_type):
            return event_type
    return None


def _event_message(event: Event) -> str:
    match event:
        case Event(_, _, message):
            return message
    return ""


class FlagdProvider:
    """Resolves flags with flagd, either remotely over RPC or in-process.

    Explicit keyword options take priority over environment variables, which
    take priority over the built-in defaults.
    """

    def __init__(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        socket_path: str | None = None,
        certificate_path: str | None = None,
        tls: bool | None = None,
        cache_type: CacheType | str | None = None,
        max_cache_size: int | None = None,
        event_stream_connection_max_attempts: int | None = None,
        otel_intercept: bool | None = None,
        resolver: ResolverType | str | None = None,
        offline_flag_source_path: str | None = None,
        selector: str | None = None,
        logger: ProviderLogger | None = None,
        environ: Mapping[str, str] | None = None,
        evaluator: Evaluator | None = None,
        flag_sync: FlagSync | None = None,
        service: FlagService | None = None,
    ) -> None:
        self.logger = logger or ProviderLogger()
        self.configuration: ProviderConfiguration = default_configuration(self.logger, environ)
        self._apply_options(
            host=host,
            port=port,
            socket_path=socket_path,
            certificate_path=certificate_path,
            tls=tls,
            cache_type=cache_type,
            max_cache_size=max_cache_size,
            event_stream_connection_max_attempts=event_stream_connection_max_attempts,
            otel_intercept=otel_intercept,
            resolver=resolver,
            offline_flag_source_path=offline_flag_source_path,
            selector=selector,
        )

        cfg = self.configuration
        if cfg.port == 0:
            cfg.port = (
                DEFAULT_IN_PROCESS_PORT
                if cfg.resolver is ResolverType.IN_PROCESS
                else DEFAULT_RPC_PORT
            )

        self.cache_service = CacheService(cfg.cache_type, cfg.max_cache_size, self.logger)
        self.service: FlagService | None = (
            service if service is not None else self._build_service(evaluator, flag_sync)
        )

        self._lock = threading.Lock()
        self._initialized = False
        self._status = ProviderState.NOT_READY
        self._events: queue.Queue = queue.Queue()
        self._forward_stop: threading.Event | None = None

    def _apply_options(
        self,
        *,
        host: str | None,
        port: int | None,
        socket_path: str | None,
        certificate_path: str | None,
        tls: bool | None,
        cache_type: CacheType | str | None,
        max_cache_size: int | None,
        event_stream_connection_max_attempts: int | None,
        otel_intercept: bool | None,
        resolver: ResolverType | str | None,
        offline_flag_source_path: str | None,
        selector: str | None,
    ) -> None:
        cfg = self.configuration
        if resolver is not None:
            cfg.resolver = ResolverType(resolver)
        if socket_path is not None:
            cfg.socket_path = socket_path
        if otel_intercept is not None:
            cfg.otel_intercept = otel_intercept
        if cache_type is not None:
            cfg.cache_type = CacheType(cache_type)
        if max_cache_size is not None and max_cache_size > 0:
            cfg.max_cache_size = max_cache_size
        if event_stream_connection_max_attempts is not None:
            cfg.event_stream_connection_max_attempts = event_stream_connection_max_attempts
        if tls is not None:
            cfg.tls_enabled = tls
        if certificate_path is not None:
            cfg.certificate_path = certificate_path
            cfg.tls_enabled = True
        if host is not None:
            cfg.host = host
        if port is not None:
            cfg.port = port
        if offline_flag_source_path is not None:
            cfg.offline_flag_source_path = offline_flag_source_path
        if selector is not None:
            cfg.selector = selector

    def _build_service(
        self, evaluator: Evaluator | None, flag_sync: FlagSync | None
    ) -> FlagService | None:
        cfg = self.configuration
        if cfg.resolver is ResolverType.RPC:
            return RpcService(
                RpcConfiguration(
                    port=cfg.port,
                    host=cfg.host,
                    certificate_path=cfg.certificate_path,
                    socket_path=cfg.socket_path,
                    tls_enabled=cfg.tls_enabled,
                    otel_interceptor=cfg.otel_intercept,
                ),
                self.cache_service,
                self.logger,
                cfg.event_stream_connection_max_attempts,
            )
        if evaluator is None or flag_sync is None:
            return None
        return InProcessService(
            InProcessConfiguration(
                host=cfg.host,
                port=cfg.port,
                selector=cfg.selector,
                tls_enabled=cfg.tls_enabled,
                offline_flag_source=cfg.offline_flag_source_path,
            ),
            evaluator,
            flag_sync,
            self.logger,
        )

    @property
    def initialized(self) -> bool:
        with self._lock:
            return self._initialized

    def initialize(self, evaluation_context: Mapping[str, Any] | None = None) -> None:
        """Start the service and block until it reports ready; idempotent."""
        with self._lock:
            if self._initialized:
                return
            if self.service is None:
                raise RuntimeError(
                    "in-process resolver requires an evaluator and a flag sync"
                )

            self.service.init()
            source: queue.Queue = self.service.events()
            first = source.get()
            if _event_type(first) != EventType.PROVIDER_READY:
                raise RuntimeError(
                    f"provider initialization failed: {_event_message(first)}"
                )

            self._status = ProviderState.READY
            self._initialized = True

            stop = threading.Event()
            self._forward_stop = stop
            threading.Thread(
                target=self._forward_events, args=(source, stop), daemon=True
            ).start()

    def _forward_events(self, source: queue.Queue, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                event = source.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            event_type = _event_type(event)
            if event_type == EventType.PROVIDER_CONFIGURATION_CHANGED:
                self._set_status(ProviderState.READY)
            elif event_type == EventType.PROVIDER_ERROR:
                self._set_status(ProviderState.ERROR)
            self._events.put(event)

    def _set_status(self, status: ProviderState) -> None:
        with self._lock:
            self._status = status

    def status(self) -> ProviderState:
        with self._lock:
            return self._status

    def shutdown(self) -> None:
        with self._lock:
            self._initialized = False
            if self._forward_stop is not None:
                self._forward_stop.set()
                self._forward_stop = None
            if self.service is not None:
                self.service.shutdown()

    def events(self) -> queue.Queue:
        return self._events

    def hooks(self) -> list:
        return []

    def metadata(self) -> Metadata:
        return Metadata(name="flagd")

    def _not_ready(self, default_value: Any) -> ResolutionDetails:
        return ResolutionDetails(value=default_value, error=ERR_CLIENT_NOT_READY)

    def resolve_boolean_details(
        self,
        flag_key: str,
        default_value: bool,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        if self.service is None:
            return self._not_ready(default_value)
        return self.service.resolve_boolean(flag_key, default_value, dict(evaluation_context or {}))

    def resolve_string_details(
        self,
        flag_key: str,
        default_value: str,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        if self.service is None:
            return self._not_ready(default_value)
        return self.service.resolve_string(flag_key, default_value, dict(evaluation_context or {}))

    def resolve_float_details(
        self,
        flag_key: str,
        default_value: float,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        if self.service is None:
            return self._not_ready(default_value)
        return self.service.resolve_float(flag_key, default_value, dict(evaluation_context or {}))

    def resolve_integer_details(
        self,
        flag_key: str,
        default_value: int,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        if self.service is None:
            return self._not_ready(default_value)
        return self.service.resolve_int(flag_key, default_value, dict(evaluation_context or {}))

    def resolve_object_details(
        self,
        flag_key: str,
        default_value: Any,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        if self.service is None:
            return self._not_ready(default_value)
        return self.service.resolve_object(flag_key, default_value, dict(evaluation_context or {}))