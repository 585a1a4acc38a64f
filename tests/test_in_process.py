import queue
import threading
from dataclasses import dataclass, field
from typing import Any

import pytest

from ofcontrib.model import ErrorCode, EventType, Reason
from ofcontrib.in_process import (
    FLAG_DISABLED_ERROR_CODE,
    FLAG_NOT_FOUND_ERROR_CODE,
    GENERAL_ERROR_CODE,
    PARSE_ERROR_CODE,
    TYPE_MISMATCH_ERROR_CODE,
    EvaluationError,
    Evaluator,
    FlagSync,
    InProcessConfiguration,
    InProcessService,
    map_error,
)


@dataclass
class MockEvaluator(Evaluator):
    value: Any = None
    variant: str = ""
    reason: str = ""
    metadata: dict = field(default_factory=dict)
    error: str | None = None
    changes: dict = field(default_factory=lambda: {"myBoolFlag": {}})
    state_error: Exception | None = None

    def _result(self):
        if self.error is not None:
            raise EvaluationError(self.error, self.reason, self.variant, self.metadata)
        return self.value, self.variant, self.reason, self.metadata

    def resolve_boolean_value(self, flag_key, context):
        return self._result()

    def resolve_string_value(self, flag_key, context):
        return self._result()

    def resolve_int_value(self, flag_key, context):
        return self._result()

    def resolve_float_value(self, flag_key, context):
        return self._result()

    def resolve_object_value(self, flag_key, context):
        return self._result()

    def set_state(self, payload):
        if self.state_error is not None:
            raise self.state_error
        return self.changes, False


class PayloadSync(FlagSync):
    def __init__(self, payloads=("{}",), init_error=None, sync_error=None):
        self.payloads = payloads
        self.init_error = init_error
        self.sync_error = sync_error
        self.stop = None

    def init(self):
        if self.init_error is not None:
            raise self.init_error

    def sync(self, data, stop):
        self.stop = stop
        if self.sync_error is not None:
            raise self.sync_error
        for payload in self.payloads:
            data.put(payload)
        stop.wait(5)


def service_for(evaluator, selector="", flag_sync=None):
    return InProcessService(
        InProcessConfiguration(selector=selector), evaluator, flag_sync or PayloadSync()
    )


@pytest.mark.parametrize(
    "method, default, evaluator, expected_value, expected_variant, expected_reason, is_error",
    [
        ("resolve_boolean", False, MockEvaluator(True, "on", Reason.STATIC.value),
         True, "on", Reason.STATIC, False),
        ("resolve_boolean", False, MockEvaluator(False, "off", Reason.ERROR.value, error="SomeError"),
         False, "off", Reason.ERROR, True),
        ("resolve_string", "", MockEvaluator("Hello", "v1", Reason.STATIC.value),
         "Hello", "v1", Reason.STATIC, False),
        ("resolve_string", "", MockEvaluator("Hello", "v1", Reason.ERROR.value, error="SomeError"),
         "", "v1", Reason.ERROR, True),
        ("resolve_float", 0.0, MockEvaluator(1.01, "v1", Reason.STATIC.value),
         1.01, "v1", Reason.STATIC, False),
        ("resolve_float", 0.0, MockEvaluator(1.0, "", Reason.ERROR.value, error="SomeError"),
         0.0, "", Reason.ERROR, True),
        ("resolve_int", 0, MockEvaluator(100, "v1", Reason.STATIC.value),
         100, "v1", Reason.STATIC, False),
        ("resolve_int", 0, MockEvaluator(0, "", Reason.ERROR.value, error="SomeError"),
         0, "", Reason.ERROR, True),
    ],
)
def test_evaluation(method, default, evaluator, expected_value, expected_variant,
                    expected_reason, is_error):
    service = service_for(evaluator)
    detail = getattr(service, method)("any", default, {})
    assert detail.value == expected_value
    assert detail.variant == expected_variant
    assert detail.reason == expected_reason
    assert (detail.error is not None) is is_error


def test_object_evaluation_success():
    struct_value = {"name": "some Name"}
    service = service_for(MockEvaluator(struct_value, "v1", Reason.STATIC.value))
    detail = service.resolve_object("any", {}, {})
    assert detail.value == struct_value
    assert detail.variant == "v1"
    assert detail.reason == Reason.STATIC
    assert detail.error is None


def test_object_evaluation_error():
    service = service_for(MockEvaluator({}, "", Reason.ERROR.value, error="SomeError"))
    default = {"fallback": True}
    detail = service.resolve_object("any", default, {})
    assert detail.value == default
    assert detail.variant == ""
    assert detail.reason == Reason.ERROR
    assert detail.error is not None
    assert detail.error.code is ErrorCode.GENERAL


@pytest.mark.parametrize(
    "error_type, expected_code",
    [
        (FLAG_NOT_FOUND_ERROR_CODE, ErrorCode.FLAG_NOT_FOUND),
        (FLAG_DISABLED_ERROR_CODE, ErrorCode.FLAG_NOT_FOUND),
        (TYPE_MISMATCH_ERROR_CODE, ErrorCode.TYPE_MISMATCH),
        (PARSE_ERROR_CODE, ErrorCode.PARSE_ERROR),
        (GENERAL_ERROR_CODE, ErrorCode.GENERAL),
    ],
)
def test_error_mapping(error_type, expected_code):
    resolution = map_error("someFlag", Exception(error_type))
    assert resolution.code is expected_code
    assert str(resolution).startswith(expected_code.value)


def test_error_mapping_messages():
    assert map_error("someFlag", EvaluationError(FLAG_DISABLED_ERROR_CODE)).message == (
        "flag: someFlag is disabled"
    )
    assert map_error("someFlag", EvaluationError(FLAG_NOT_FOUND_ERROR_CODE)).message == (
        "flag: someFlag not found"
    )


def test_selector_adds_scope_metadata():
    service = service_for(MockEvaluator(True, "on", Reason.STATIC.value), selector="app=myapp")
    detail = service.resolve_boolean("any", False, {})
    assert detail.flag_metadata["scope"] == "app=myapp"


def test_scope_metadata_on_error():
    evaluator = MockEvaluator(False, "", Reason.ERROR.value, {"a": 1}, error="SomeError")
    detail = service_for(evaluator, selector="s").resolve_boolean("any", False, {})
    assert detail.flag_metadata == {"a": 1, "scope": "s"}


def test_source_uri():
    assert InProcessConfiguration(host="localhost", port=8090).source_uri == "localhost:8090"
    assert InProcessConfiguration(offline_flag_source="/f.json").source_uri == "/f.json"


def test_init_emits_ready_then_config_change():
    flag_sync = PayloadSync()
    service = service_for(MockEvaluator(True, "on", Reason.STATIC.value), flag_sync=flag_sync)
    service.init()
    try:
        events = service.events()
        first = events.get(timeout=2)
        assert first.event_type is EventType.PROVIDER_READY
        second = events.get(timeout=2)
        assert second.event_type is EventType.PROVIDER_CONFIGURATION_CHANGED
        assert second.flag_changes == ["myBoolFlag"]
        assert second.message == "New flag sync"
    finally:
        service.shutdown()
    assert flag_sync.stop.is_set()


def test_set_state_error_emits_error_event_then_ready():
    evaluator = MockEvaluator(state_error=ValueError("bad payload"))
    service = service_for(evaluator)
    service.init()
    try:
        events = service.events()
        error = events.get(timeout=2)
        assert error.event_type is EventType.PROVIDER_ERROR
        assert error.message == "Error from flag sync bad payload"
        assert events.get(timeout=2).event_type is EventType.PROVIDER_READY
        change = events.get(timeout=2)
        assert change.flag_changes == []
    finally:
        service.shutdown()


def test_init_raises_when_sync_init_fails():
    service = service_for(MockEvaluator(), flag_sync=PayloadSync(init_error=OSError("no source")))
    with pytest.raises(OSError, match="no source"):
        service.init()


def test_init_raises_when_sync_fails():
    service = service_for(
        MockEvaluator(), flag_sync=PayloadSync(sync_error=ConnectionError("down"))
    )
    try:
        with pytest.raises(ConnectionError, match="down"):
            service.init()
    finally:
        service.shutdown()


def test_events_queue_is_stable():
    service = service_for(MockEvaluator())
    assert isinstance(service.events(), queue.Queue)
    assert service.events() is service.events()
    assert service.events().empty()


def test_shutdown_sets_stop_before_init():
    stop_seen = threading.Event()
    service = service_for(MockEvaluator())
    service.shutdown()
    service._sync_stop.wait(0)
    stop_seen.set()
    assert service._sync_stop.is_set() and service._listener_shutdown.is_set()