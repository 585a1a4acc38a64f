"""Core data types shared by providers, services and hooks."""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Codes describing why a flag resolution failed."""

    PROVIDER_NOT_READY = "PROVIDER_NOT_READY"
    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    TARGETING_KEY_MISSING = "TARGETING_KEY_MISSING"
    INVALID_CONTEXT = "INVALID_CONTEXT"
    GENERAL = "GENERAL"


class Reason(str, Enum):
    """Reasons a provider gives for a resolved value."""

    STATIC = "STATIC"
    DEFAULT = "DEFAULT"
    TARGETING_MATCH = "TARGETING_MATCH"
    SPLIT = "SPLIT"
    CACHED = "CACHED"
    DISABLED = "DISABLED"
    UNKNOWN = "UNKNOWN"
    ERROR = "ERROR"


class FlagType(str, Enum):
    """Value types a flag can be evaluated as."""

    BOOLEAN = "bool"
    STRING = "string"
    FLOAT = "float"
    INTEGER = "int"
    OBJECT = "object"


class EventType(str, Enum):
    """Kinds of provider events."""

    PROVIDER_READY = "PROVIDER_READY"
    PROVIDER_CONFIGURATION_CHANGED = "PROVIDER_CONFIGURATION_CHANGED"
    PROVIDER_STALE = "PROVIDER_STALE"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class ProviderState(str, Enum):
    """Lifecycle states of a provider."""

    NOT_READY = "NOT_READY"
    READY = "READY"
    ERROR = "ERROR"
    STALE = "STALE"


class ResolutionError(Exception):
    """A flag resolution failure carrying an error code."""

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        super().__init__(code, message)
        self.code = ErrorCode(code)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResolutionError):
            return NotImplemented
        return self.code == other.code and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.code, self.message))


class FlagMetadata(dict):
    """Flag metadata with typed accessors."""

    def _lookup(self, key: str) -> Any:
        try:
            return self[key]
        except KeyError:
            raise KeyError(f"flag metadata key {key!r} does not exist") from None

    def get_bool(self, key: str) -> bool:
        value = self._lookup(key)
        if not isinstance(value, bool):
            raise TypeError(f"flag metadata value for {key!r} is not a bool")
        return value

    def get_string(self, key: str) -> str:
        value = self._lookup(key)
        if not isinstance(value, str):
            raise TypeError(f"flag metadata value for {key!r} is not a string")
        return value

    def get_int(self, key: str) -> int:
        value = self._lookup(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"flag metadata value for {key!r} is not an int")
        return value

    def get_float(self, key: str) -> float:
        value = self._lookup(key)
        if not isinstance(value, float):
            raise TypeError(f"flag metadata value for {key!r} is not a float")
        return value


@dataclass
class ResolutionDetails:
    """What a provider or service returns for one flag resolution."""

    value: Any = None
    reason: str = ""
    variant: str = ""
    error: ResolutionError | None = None
    flag_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def error_code(self) -> ErrorCode | None:
        return self.error.code if self.error is not None else None

    @property
    def error_message(self) -> str:
        return self.error.message if self.error is not None else ""


@dataclass
class EvaluationDetails:
    """The outcome of a flag evaluation as seen by hooks."""

    value: Any = None
    flag_key: str = ""
    flag_type: FlagType | None = None
    reason: str = ""
    variant: str = ""
    error_code: ErrorCode | None = None
    error_message: str = ""
    flag_metadata: FlagMetadata = field(default_factory=FlagMetadata)

    def __post_init__(self) -> None:
        if not isinstance(self.flag_metadata, FlagMetadata):
            self.flag_metadata = FlagMetadata(self.flag_metadata or {})


@dataclass(frozen=True)
class Metadata:
    """Descriptive metadata of a provider."""

    name: str = ""


@dataclass
class HookContext:
    """Information about the evaluation a hook is running for."""

    flag_key: str = ""
    flag_type: FlagType = FlagType.BOOLEAN
    default_value: Any = None
    client_name: str = ""
    provider_metadata: Metadata = field(default_factory=Metadata)
    evaluation_context: dict[str, Any] = field(default_factory=dict)


@dataclass
class Event:
    """An event emitted by a provider or service."""

    event_type: EventType
    provider_name: str = ""
    message: str = ""
    flag_changes: list[str] = field(default_factory=list)


class FlagService(ABC):
    """The evaluation backend behind the flagd provider."""

    @abstractmethod
    def init(self) -> None:
        """Start the service; raise if it cannot start."""

    @abstractmethod
    def shutdown(self) -> None:
        """Stop the service."""

    @abstractmethod
    def events(self) -> queue.Queue:
        """Queue on which the service publishes Event objects."""

    @abstractmethod
    def resolve_boolean(
        self, key: str, default_value: bool, evaluation_context: dict[str, Any]
    ) -> ResolutionDetails: ...

    @abstractmethod
    def resolve_string(
        self, key: str, default_value: str, evaluation_context: dict[str, Any]
    ) -> ResolutionDetails: ...

    @abstractmethod
    def resolve_float(
        self, key: str, default_value: float, evaluation_context: dict[str, Any]
    ) -> ResolutionDetails: ...

    @abstractmethod
    def resolve_int(
        self, key: str, default_value: int, evaluation_context: dict[str, Any]
    ) -> ResolutionDetails: ...

    @abstractmethod
    def resolve_object(
        self, key: str, default_value: Any, evaluation_context: dict[str, Any]
    ) -> ResolutionDetails: ...