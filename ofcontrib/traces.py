"""Tracing hook recording flag evaluations on the current span."""

from __future__ import annotations

import contextvars
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

from ofcontrib.model import EvaluationDetails, FlagMetadata, HookContext

EVENT_NAME = "feature_flag"
EVENT_PROPERTY_FLAG_KEY = "feature_flag.key"
EVENT_PROPERTY_PROVIDER_NAME = "feature_flag.provider_name"
EVENT_PROPERTY_VARIANT = "feature_flag.variant"
EXCEPTION_EVENT_NAME = "exception"

AttributeMapper = Callable[[FlagMetadata], Mapping[str, Any]]


class StatusCode(Enum):
    """Status of a span."""

    UNSET = 0
    ERROR = 1
    OK = 2


@dataclass
class SpanEvent:
    """A named, timestamped event on a span."""

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class Span:
    """A unit of traced work collecting events and a status."""

    def __init__(self, name: str = "", recording: bool = True) -> None:
        self.name = name
        self.recording = recording
        self.events: list[SpanEvent] = []
        self.status = StatusCode.UNSET
        self.status_description = ""

    def add_event(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        if self.recording:
            self.events.append(SpanEvent(name, dict(attributes or {})))

    def set_status(self, code: StatusCode, description: str = "") -> None:
        if not self.recording:
            return
        self.status = code
        self.status_description = description if code is StatusCode.ERROR else ""

    def record_error(
        self, exception: BaseException, attributes: Mapping[str, Any] | None = None
    ) -> None:
        """Add an exception event describing ``exception``."""
        event_attributes = {
            "exception.type": type(exception).__name__,
            "exception.message": str(exception),
        }
        event_attributes.update(attributes or {})
        self.add_event(EXCEPTION_EVENT_NAME, event_attributes)


_current_span: contextvars.ContextVar[Span | None] = contextvars.ContextVar(
    "ofcontrib_current_span", default=None
)


@contextmanager
def use_span(span: Span) -> Iterator[Span]:
    """Make ``span`` the current span for the duration of the block."""
    token = _current_span.set(span)
    try:
        yield span
    finally:
        _current_span.reset(token)


def current_span() -> Span:
    """The active span, or a non-recording span when none is active."""
    span = _current_span.get()
    return span if span is not None else Span(recording=False)


class TracesHook:
    """Adds flag evaluation events and errors to the current span."""

    def __init__(
        self,
        set_error_status: bool = False,
        attribute_mapper: AttributeMapper | None = None,
    ) -> None:
        self.set_error_status = set_error_status
        self.attribute_mapper = attribute_mapper

    def after(
        self,
        hook_context: HookContext,
        details: EvaluationDetails,
        hints: Mapping[str, Any] | None = None,
    ) -> None:
        attributes: dict[str, Any] = {
            EVENT_PROPERTY_FLAG_KEY: hook_context.flag_key,
            EVENT_PROPERTY_PROVIDER_NAME: hook_context.provider_metadata.name,
        }
        if details.variant:
            attributes[EVENT_PROPERTY_VARIANT] = details.variant
        if self.attribute_mapper is not None:
            attributes.update(self.attribute_mapper(details.flag_metadata))
        current_span().add_event(EVENT_NAME, attributes)

    def error(
        self,
        hook_context: HookContext,
        exception: BaseException,
        hints: Mapping[str, Any] | None = None,
    ) -> None:
        span = current_span()
        if self.set_error_status:
            flag_type = getattr(hook_context.flag_type, "value", hook_context.flag_type)
            span.set_status(
                StatusCode.ERROR,
                f"error evaluating flag '{hook_context.flag_key}' of type '{flag_type}'",
            )
        span.record_error(
            exception,
            {
                EVENT_PROPERTY_FLAG_KEY: hook_context.flag_key,
                EVENT_PROPERTY_PROVIDER_NAME: hook_context.provider_metadata.name,
            },
        )