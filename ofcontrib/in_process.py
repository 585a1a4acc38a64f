"""Flag evaluation in-process, with flag configurations obtained from a sync source."""

from __future__ import annotations

import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from ofcontrib.logger import ProviderLogger
from ofcontrib.model import (
    ErrorCode,
    Event,
    EventType,
    FlagService,
    Reason,
    ResolutionDetails,
    ResolutionError,
)

FLAG_NOT_FOUND_ERROR_CODE = "FLAG_NOT_FOUND"
FLAG_DISABLED_ERROR_CODE = "FLAG_DISABLED"
TYPE_MISMATCH_ERROR_CODE = "TYPE_MISMATCH"
PARSE_ERROR_CODE = "PARSE_ERROR"
GENERAL_ERROR_CODE = "GENERAL"

_PROVIDER_NAME = "flagd"
_POLL_INTERVAL = 0.05


class EvaluationError(Exception):
    """An evaluator failure, carrying what the evaluator still determined."""

    def __init__(
        self,
        code: str,
        reason: str = Reason.ERROR.value,
        variant: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code)
        self.code = code
        self.reason = reason
        self.variant = variant
        self.metadata = dict(metadata or {})

    def __str__(self) -> str:
        return self.code


@dataclass
class InProcessConfiguration:
    """Where the in-process service gets its flags from."""

    host: Any = "localhost"
    port: Any = 8015
    selector: str = ""
    tls_enabled: bool = False
    offline_flag_source: str = ""

    @property
    def source_uri(self) -> str:
        if self.offline_flag_source:
            return self.offline_flag_source
        return f"{self.host}:{self.port}"


class Evaluator(ABC):
    """Evaluates flags against the current flag configuration.

    Each resolve method returns ``(value, variant, reason, metadata)`` or raises
    EvaluationError.
    """

    @abstractmethod
    def resolve_boolean_value(self, flag_key: str, context: dict[str, Any]) -> tuple: ...

    @abstractmethod
    def resolve_string_value(self, flag_key: str, context: dict[str, Any]) -> tuple: ...

    @abstractmethod
    def resolve_int_value(self, flag_key: str, context: dict[str, Any]) -> tuple: ...

    @abstractmethod
    def resolve_float_value(self, flag_key: str, context: dict[str, Any]) -> tuple: ...

    @abstractmethod
    def resolve_object_value(self, flag_key: str, context: dict[str, Any]) -> tuple: ...

    @abstractmethod
    def set_state(self, payload: Any) -> tuple[dict[str, Any], bool]:
        """Apply a synced payload; return the changed flags and a resync marker."""


class FlagSync(ABC):
    """A source of flag configuration payloads."""

    @abstractmethod
    def init(self) -> None:
        """Prepare the source; raise if it cannot be used."""

    @abstractmethod
    def sync(self, data: queue.Queue, stop: threading.Event) -> None:
        """Put payloads on ``data`` until ``stop`` is set; raise on failure."""


def map_error(flag_key: str, error: BaseException) -> ResolutionError:
    """Map an evaluator error to a resolution error."""
    code = str(error)
    if code == FLAG_NOT_FOUND_ERROR_CODE:
        return ResolutionError(ErrorCode.FLAG_NOT_FOUND, f"flag: {flag_key} not found")
    if code == FLAG_DISABLED_ERROR_CODE:
        return ResolutionError(ErrorCode.FLAG_NOT_FOUND, f"flag: {flag_key} is disabled")
    if code == TYPE_MISMATCH_ERROR_CODE:
        return ResolutionError(
            ErrorCode.TYPE_MISMATCH, f"flag: {flag_key} evaluated type not valid"
        )
    if code == PARSE_ERROR_CODE:
        return ResolutionError(ErrorCode.PARSE_ERROR, f"flag: {flag_key} parsing error")
    return ResolutionError(ErrorCode.GENERAL, f"flag: {flag_key} unable to evaluate")


class InProcessService(FlagService):
    """Evaluates flags locally using flags delivered by a sync source."""

    def __init__(
        self,
        configuration: InProcessConfiguration,
        evaluator: Evaluator,
        flag_sync: FlagSync,
        logger: ProviderLogger | None = None,
    ) -> None:
        self.configuration = configuration
        self.evaluator = evaluator
        self.flag_sync = flag_sync
        self.logger = logger or ProviderLogger()
        self.source_uri = configuration.source_uri
        self.service_metadata: dict[str, Any] = (
            {"scope": configuration.selector} if configuration.selector else {}
        )
        self._events: queue.Queue = queue.Queue()
        self._sync_stop = threading.Event()
        self._listener_shutdown = threading.Event()

        if configuration.offline_flag_source:
            self.logger.info(
                "operating in in-process mode with offline flags sourced from %s",
                self.source_uri,
            )
        else:
            self.logger.info(
                "operating in in-process mode with flags sourced from %s", self.source_uri
            )

    def init(self) -> None:
        """Start syncing and block until the first payload is applied or sync fails."""
        self.flag_sync.init()

        data: queue.Queue = queue.Queue(maxsize=1)
        outcome: queue.Queue = queue.Queue()

        def run_sync() -> None:
            try:
                self.flag_sync.sync(data, self._sync_stop)
            except Exception as err:  # noqa: BLE001 - reported to init
                outcome.put(err)

        def listen() -> None:
            ready = False
            while not self._listener_shutdown.is_set():
                try:
                    payload = data.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                changes: dict[str, Any] = {}
                try:
                    changes, _ = self.evaluator.set_state(payload)
                except Exception as err:  # noqa: BLE001 - surfaced as an event
                    self._events.put(
                        Event(
                            EventType.PROVIDER_ERROR,
                            _PROVIDER_NAME,
                            "Error from flag sync " + str(err),
                        )
                    )
                if not ready:
                    ready = True
                    self._events.put(Event(EventType.PROVIDER_READY, _PROVIDER_NAME))
                    outcome.put(None)
                self._events.put(
                    Event(
                        EventType.PROVIDER_CONFIGURATION_CHANGED,
                        _PROVIDER_NAME,
                        "New flag sync",
                        list(changes or {}),
                    )
                )
            self.logger.info("Shutting down data sync listener")

        threading.Thread(target=run_sync, daemon=True).start()
        threading.Thread(target=listen, daemon=True).start()

        result = outcome.get()
        if result is not None:
            raise result

    def shutdown(self) -> None:
        self._sync_stop.set()
        self._listener_shutdown.set()

    def events(self) -> queue.Queue:
        return self._events

    def _resolve(
        self,
        resolver: Callable[[str, dict[str, Any]], tuple],
        key: str,
        default_value: Any,
        evaluation_context: dict[str, Any] | None,
    ) -> ResolutionDetails:
        try:
            value, variant, reason, metadata = resolver(key, evaluation_context or {})
        except EvaluationError as err:
            return ResolutionDetails(
                value=default_value,
                reason=err.reason,
                variant=err.variant,
                error=map_error(key, err),
                flag_metadata=self._with_service_metadata(err.metadata),
            )
        return ResolutionDetails(
            value=value,
            reason=reason,
            variant=variant,
            flag_metadata=self._with_service_metadata(metadata),
        )

    def _with_service_metadata(self, metadata: dict[str, Any] | None) -> dict[str, Any]:
        merged = dict(metadata or {})
        merged.update(self.service_metadata)
        return merged

    def resolve_boolean(
        self, key: str, default_value: bool, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            self.evaluator.resolve_boolean_value, key, default_value, evaluation_context
        )

    def resolve_string(
        self, key: str, default_value: str, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            self.evaluator.resolve_string_value, key, default_value, evaluation_context
        )

    def resolve_float(
        self, key: str, default_value: float, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            self.evaluator.resolve_float_value, key, default_value, evaluation_context
        )

    def resolve_int(
        self, key: str, default_value: int, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            self.evaluator.resolve_int_value, key, default_value, evaluation_context
        )

    def resolve_object(
        self, key: str, default_value: Any, evaluation_context: dict[str, Any] | None = None
    ) -> ResolutionDetails:
        return self._resolve(
            self.evaluator.resolve_object_value, key, default_value, evaluation_context
        )