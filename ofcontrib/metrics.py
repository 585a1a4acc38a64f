"""Metrics hook counting flag evaluations, with an in-process meter."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from ofcontrib.model import EvaluationDetails, FlagMetadata, HookContext
from ofcontrib.traces import (
    EVENT_PROPERTY_FLAG_KEY,
    EVENT_PROPERTY_PROVIDER_NAME,
    EVENT_PROPERTY_VARIANT,
    EXCEPTION_EVENT_NAME,
)

METER_NAME = "go.openfeature.dev"

EVALUATION_ACTIVE = "feature_flag.evaluation_active_count"
EVALUATION_REQUESTS = "feature_flag.evaluation_requests_total"
EVALUATION_SUCCESS = "feature_flag.evaluation_success_total"
EVALUATION_ERRORS = "feature_flag.evaluation_error_total"

AttributeMapper = Callable[[FlagMetadata], Mapping[str, Any]]


class DimensionType(Enum):
    """Value type of a metadata dimension."""

    BOOL = 0
    STRING = 1
    INT = 2
    FLOAT = 3


@dataclass(frozen=True)
class DimensionDescription:
    """A flag metadata key and the type its value is read as."""

    key: str
    type: DimensionType


@dataclass
class DataPoint:
    """The running sum of a counter for one attribute set."""

    attributes: dict[str, Any]
    value: int


@dataclass
class MetricData:
    """A snapshot of one instrument."""

    name: str
    description: str
    monotonic: bool
    data_points: list[DataPoint] = field(default_factory=list)


def _attribute_key(attributes: Mapping[str, Any]) -> tuple[tuple[str, Any], ...]:
    return tuple(sorted(attributes.items(), key=lambda item: item[0]))


class Counter:
    """An integer sum instrument, split by attribute set."""

    def __init__(self, name: str, description: str = "", monotonic: bool = True) -> None:
        self.name = name
        self.description = description
        self.monotonic = monotonic
        self._sums: dict[tuple[tuple[str, Any], ...], int] = {}
        self._lock = threading.Lock()

    def add(self, amount: int, attributes: Mapping[str, Any] | None = None) -> None:
        """Add ``amount`` to the sum for the given attributes."""
        if self.monotonic and amount < 0:
            raise ValueError(f"counter {self.name!r} cannot be decreased")
        key = _attribute_key(attributes or {})
        with self._lock:
            self._sums[key] = self._sums.get(key, 0) + amount

    def _snapshot(self) -> MetricData:
        with self._lock:
            points = [DataPoint(dict(key), value) for key, value in self._sums.items()]
        return MetricData(self.name, self.description, self.monotonic, points)


class Meter:
    """Creates counters and collects what they recorded."""

    def __init__(self, name: str = METER_NAME) -> None:
        self.name = name
        self._instruments: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def _instrument(self, name: str, description: str, monotonic: bool) -> Counter:
        with self._lock:
            existing = self._instruments.get(name)
            if existing is not None:
                return existing
            counter = Counter(name, description, monotonic)
            self._instruments[name] = counter
            return counter

    def counter(self, name: str, description: str = "") -> Counter:
        """Return the monotonic counter of this name, creating it if needed."""
        return self._instrument(name, description, True)

    def collect(self) -> list[MetricData]:
        """Snapshots of instruments that have recorded data, in creation order."""
        with self._lock:
            instruments = list(self._instruments.values())
        snapshots = (instrument._snapshot() for instrument in instruments)
        return [snapshot for snapshot in snapshots if snapshot.data_points]


def descriptions_to_attributes(
    metadata: FlagMetadata | Mapping[str, Any],
    descriptions: Iterable[DimensionDescription],
) -> dict[str, Any]:
    """Read the described dimensions from metadata; missing or mistyped ones are skipped."""
    if not isinstance(metadata, FlagMetadata):
        metadata = FlagMetadata(metadata or {})
    getters = {
        DimensionType.BOOL: metadata.get_bool,
        DimensionType.STRING: metadata.get_string,
        DimensionType.INT: metadata.get_int,
        DimensionType.FLOAT: metadata.get_float,
    }
    attributes: dict[str, Any] = {}
    for dimension in descriptions:
        getter = getters.get(dimension.type)
        if getter is None:
            continue
        try:
            attributes[dimension.key] = getter(dimension.key)
        except (KeyError, TypeError):
            continue
    return attributes


class MetricsHook:
    """Counts active, requested, successful and failed flag evaluations."""

    def __init__(
        self,
        meter: Meter | None = None,
        flag_metadata_dimensions: Iterable[DimensionDescription] = (),
        attribute_mapper: AttributeMapper | None = None,
    ) -> None:
        self.meter = meter if meter is not None else Meter()
        self.active_counter = self.meter._instrument(
            EVALUATION_ACTIVE, "active flag evaluations counter", False
        )
        self.request_counter = self.meter.counter(
            EVALUATION_REQUESTS, "feature flag evaluation request counter"
        )
        self.success_counter = self.meter.counter(
            EVALUATION_SUCCESS, "feature flag evaluation success counter"
        )
        self.error_counter = self.meter.counter(
            EVALUATION_ERRORS, "feature flag evaluation error counter"
        )
        self.flag_metadata_dimensions = list(flag_metadata_dimensions)
        self.attribute_mapper = attribute_mapper

    @staticmethod
    def _base_attributes(hook_context: HookContext) -> dict[str, Any]:
        return {
            EVENT_PROPERTY_FLAG_KEY: hook_context.flag_key,
            EVENT_PROPERTY_PROVIDER_NAME: hook_context.provider_metadata.name,
        }

    def before(self, hook_context: HookContext, hints: Mapping[str, Any] | None = None) -> None:
        self.active_counter.add(1, {EVENT_PROPERTY_FLAG_KEY: hook_context.flag_key})
        self.request_counter.add(1, self._base_attributes(hook_context))
        return None

    def after(
        self,
        hook_context: HookContext,
        details: EvaluationDetails,
        hints: Mapping[str, Any] | None = None,
    ) -> None:
        attributes = self._base_attributes(hook_context)
        if details.variant:
            attributes[EVENT_PROPERTY_VARIANT] = details.variant
        if details.reason:
            attributes["reason"] = str(getattr(details.reason, "value", details.reason))
        attributes.update(
            descriptions_to_attributes(details.flag_metadata, self.flag_metadata_dimensions)
        )
        if self.attribute_mapper is not None:
            attributes.update(self.attribute_mapper(details.flag_metadata))
        self.success_counter.add(1, attributes)

    def error(
        self,
        hook_context: HookContext,
        exception: BaseException,
        hints: Mapping[str, Any] | None = None,
    ) -> None:
        attributes = self._base_attributes(hook_context)
        attributes[EXCEPTION_EVENT_NAME] = str(exception)
        self.error_counter.add(1, attributes)

    def finally_after(
        self, hook_context: HookContext, hints: Mapping[str, Any] | None = None
    ) -> None:
        self.active_counter.add(-1, {EVENT_PROPERTY_FLAG_KEY: hook_context.flag_key})