import pytest

from ofcontrib.model import (
    ErrorCode,
    EvaluationDetails,
    FlagMetadata,
    FlagService,
    Reason,
    ResolutionDetails,
    ResolutionError,
)


def test_resolution_error_str_starts_with_code():
    err = ResolutionError(ErrorCode.FLAG_NOT_FOUND, "requested flag not found")
    assert str(err) == "FLAG_NOT_FOUND: requested flag not found"
    assert str(err).startswith(ErrorCode.FLAG_NOT_FOUND.value)


def test_resolution_error_equality():
    a = ResolutionError(ErrorCode.GENERAL, "x")
    b = ResolutionError(ErrorCode.GENERAL, "x")
    c = ResolutionError(ErrorCode.PARSE_ERROR, "x")
    assert a == b
    assert not (a == c)


def test_resolution_error_is_raisable():
    err = ResolutionError(ErrorCode.TYPE_MISMATCH, "bad type")
    assert err.code is ErrorCode.TYPE_MISMATCH
    assert err.message == "bad type"
    with pytest.raises(ResolutionError) as info:
        raise err
    assert str(info.value) == "TYPE_MISMATCH: bad type"


def test_flag_metadata_typed_getters():
    metadata = FlagMetadata(
        {"scope": "7c34165e-fbef-11ed-be56-0242ac120002", "stage": 1, "score": 4.5, "cached": False}
    )
    assert metadata.get_string("scope") == "7c34165e-fbef-11ed-be56-0242ac120002"
    assert metadata.get_int("stage") == 1
    assert metadata.get_float("score") == 4.5
    assert metadata.get_bool("cached") is False


@pytest.mark.parametrize(
    "wrong_getter, key, right_getter, expected",
    [
        ("get_string", "stage", "get_int", 1),
        ("get_int", "score", "get_float", 4.5),
        ("get_float", "stage", "get_int", 1),
        ("get_bool", "scope", "get_string", "s"),
        ("get_int", "cached", "get_bool", False),
    ],
)
def test_flag_metadata_wrong_type(wrong_getter, key, right_getter, expected):
    metadata = FlagMetadata({"scope": "s", "stage": 1, "score": 4.5, "cached": False})
    with pytest.raises(TypeError):
        getattr(metadata, wrong_getter)(key)
    assert getattr(metadata, right_getter)(key) == expected


def test_flag_metadata_missing_key():
    with pytest.raises(KeyError):
        FlagMetadata().get_string("absent")


def test_resolution_details_error_properties():
    ok = ResolutionDetails(value=True, reason=Reason.STATIC, variant="on")
    assert ok.error_code is None
    assert ok.error_message == ""
    failed = ResolutionDetails(value=False, error=ResolutionError(ErrorCode.GENERAL, "boom"))
    assert failed.error_code is ErrorCode.GENERAL
    assert failed.error_message == "boom"


def test_reason_compares_with_plain_string():
    assert ResolutionDetails(reason="STATIC").reason == Reason.STATIC


def test_evaluation_details_wraps_metadata():
    details = EvaluationDetails(value="x", flag_metadata={"stage": 1})
    assert isinstance(details.flag_metadata, FlagMetadata)
    assert details.flag_metadata.get_int("stage") == 1


def test_flag_service_is_abstract():
    with pytest.raises(TypeError):
        FlagService()