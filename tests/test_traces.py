from ofcontrib.model import EvaluationDetails, FlagType, HookContext, Metadata
from ofcontrib.traces import (
    EVENT_NAME,
    EVENT_PROPERTY_FLAG_KEY,
    EVENT_PROPERTY_PROVIDER_NAME,
    EVENT_PROPERTY_VARIANT,
    EXCEPTION_EVENT_NAME,
    Span,
    StatusCode,
    TracesHook,
    current_span,
    use_span,
)

SCOPE_KEY = "scope"
SCOPE_VALUE = "7c34165e-fbef-11ed-be56-0242ac120002"
STAGE_KEY = "stage"
STAGE_VALUE = 1
SCORE_KEY = "score"
SCORE_VALUE = 4.5
CACHED_KEY = "cached"
CACHED_VALUE = False

EVAL_METADATA = {
    SCOPE_KEY: SCOPE_VALUE,
    STAGE_KEY: STAGE_VALUE,
    SCORE_KEY: SCORE_VALUE,
    CACHED_KEY: CACHED_VALUE,
}


def extraction_callback(metadata):
    return {
        SCOPE_KEY: metadata.get_string(SCOPE_KEY),
        STAGE_KEY: metadata.get_int(STAGE_KEY),
        SCORE_KEY: metadata.get_float(SCORE_KEY),
        CACHED_KEY: metadata.get_bool(CACHED_KEY),
    }


def string_hook_context():
    return HookContext(
        flag_key="flag-key",
        flag_type=FlagType.STRING,
        default_value="default",
        provider_metadata=Metadata(name="provider-name"),
        evaluation_context={"targetingKey": "test-targeting-key", "this": "that"},
    )


def test_after_adds_feature_flag_event():
    span = Span("Run")
    hook = TracesHook()
    with use_span(span):
        hook.after(string_hook_context(), EvaluationDetails(variant="variant"), {})

    assert len(span.events) == 1
    event = span.events[0]
    assert event.name == EVENT_NAME
    assert event.attributes == {
        EVENT_PROPERTY_FLAG_KEY: "flag-key",
        EVENT_PROPERTY_PROVIDER_NAME: "provider-name",
        EVENT_PROPERTY_VARIANT: "variant",
    }


def test_error_records_exception_without_status():
    span = Span("Run")
    hook = TracesHook()
    with use_span(span):
        hook.error(HookContext(), RuntimeError("a terrible error"), {})

    assert span.status is StatusCode.UNSET
    assert len(span.events) == 1
    assert span.events[0].name == EXCEPTION_EVENT_NAME
    assert span.events[0].attributes["exception.message"] == "a terrible error"


def test_error_sets_status_when_enabled():
    span = Span("Run")
    hook = TracesHook(set_error_status=True)
    with use_span(span):
        hook.error(HookContext(), RuntimeError("a terrible error"), {})

    assert span.status is StatusCode.ERROR
    assert span.status_description == "error evaluating flag '' of type 'bool'"


def test_no_active_span_does_not_fail():
    hook = TracesHook()
    result = hook.after(string_hook_context(), EvaluationDetails(variant="variant"), {})
    hook.error(HookContext(), RuntimeError("boom"), {})

    assert result is None
    span = current_span()
    assert span.recording is False
    assert span.events == []


def test_metadata_extraction_option():
    span = Span("Run")
    hook = TracesHook(attribute_mapper=extraction_callback)
    details = EvaluationDetails(
        value="ok", flag_key="stringFlag", flag_type=FlagType.STRING, flag_metadata=EVAL_METADATA
    )
    with use_span(span):
        hook.after(HookContext(), details, {})

    assert len(span.events) == 1
    assert span.events[0].name == EVENT_NAME
    attributes = span.events[0].attributes
    assert attributes[SCOPE_KEY] == SCOPE_VALUE
    assert attributes[STAGE_KEY] == STAGE_VALUE
    assert attributes[SCORE_KEY] == SCORE_VALUE
    assert attributes[CACHED_KEY] is CACHED_VALUE


def test_use_span_restores_previous_span():
    outer = Span("outer")
    inner = Span("inner")
    with use_span(outer):
        with use_span(inner):
            assert current_span() is inner
        assert current_span() is outer
    assert current_span().recording is False