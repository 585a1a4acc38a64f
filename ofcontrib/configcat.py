"""OpenFeature provider backed by a ConfigCat client."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from ofcontrib.model import ErrorCode, Metadata, Reason, ResolutionDetails, ResolutionError

IDENTIFIER_KEY = "targetingKey"
EMAIL_KEY = "email"
COUNTRY_KEY = "country"

_ATTRIBUTE_NAMES = {
    IDENTIFIER_KEY: "Identifier",
    EMAIL_KEY: "Email",
    COUNTRY_KEY: "Country",
}


class KeyNotFoundError(LookupError):
    """The requested setting does not exist in the config."""


class SettingTypeMismatchError(TypeError):
    """The setting's type differs from the requested type."""


class ConfigJsonMissingError(RuntimeError):
    """The config JSON has not been fetched or could not be read."""


@dataclass
class ConfigCatEvaluation:
    """The result of one evaluation by a ConfigCat client."""

    value: Any = None
    variation_id: str = ""
    is_default_value: bool = False
    error: BaseException | None = None
    matched_targeting_rule: Any = None
    matched_percentage_option: Any = None


class ConfigCatClient(Protocol):
    """The part of a ConfigCat client the provider needs."""

    def get_bool_value_details(
        self, key: str, default_value: bool, user: UserAttributes | None
    ) -> ConfigCatEvaluation: ...

    def get_string_value_details(
        self, key: str, default_value: str, user: UserAttributes | None
    ) -> ConfigCatEvaluation: ...

    def get_float_value_details(
        self, key: str, default_value: float, user: UserAttributes | None
    ) -> ConfigCatEvaluation: ...

    def get_int_value_details(
        self, key: str, default_value: int, user: UserAttributes | None
    ) -> ConfigCatEvaluation: ...


@dataclass
class UserAttributes:
    """ConfigCat user data built from an evaluation context."""

    attributes: dict[str, Any]

    def get_attribute(self, key: str) -> Any:
        return self.attributes.get(key)


def to_user_data(evaluation_context: Mapping[str, Any] | None) -> UserAttributes | None:
    """Map an evaluation context to ConfigCat user data; None when empty."""
    if not evaluation_context:
        return None
    return UserAttributes(
        {_ATTRIBUTE_NAMES.get(key, key): value for key, value in evaluation_context.items()}
    )


def to_resolution_error(error: BaseException) -> ResolutionError:
    """Translate a ConfigCat evaluation error into a resolution error."""
    if isinstance(error, KeyNotFoundError):
        code = ErrorCode.FLAG_NOT_FOUND
    elif isinstance(error, SettingTypeMismatchError):
        code = ErrorCode.TYPE_MISMATCH
    elif isinstance(error, ConfigJsonMissingError):
        code = ErrorCode.PARSE_ERROR
    else:
        code = ErrorCode.GENERAL
    return ResolutionError(code, str(error))


def _details(value: Any, evaluation: ConfigCatEvaluation) -> ResolutionDetails:
    if evaluation.error is not None:
        return ResolutionDetails(
            value=value,
            reason=Reason.ERROR,
            error=to_resolution_error(evaluation.error),
        )
    matched = (
        evaluation.matched_targeting_rule is not None
        or evaluation.matched_percentage_option is not None
    )
    return ResolutionDetails(
        value=value,
        reason=Reason.TARGETING_MATCH if matched else Reason.DEFAULT,
        variant=evaluation.variation_id or "",
    )


class ConfigCatProvider:
    """Resolves feature flags through a ConfigCat client."""

    def __init__(self, client: ConfigCatClient) -> None:
        self.client = client

    def metadata(self) -> Metadata:
        return Metadata(name="ConfigCat")

    def hooks(self) -> list:
        return []

    def resolve_boolean_details(
        self,
        flag_key: str,
        default_value: bool,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        evaluation = self.client.get_bool_value_details(
            flag_key, default_value, to_user_data(evaluation_context)
        )
        return _details(evaluation.value, evaluation)

    def resolve_string_details(
        self,
        flag_key: str,
        default_value: str,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        evaluation = self.client.get_string_value_details(
            flag_key, default_value, to_user_data(evaluation_context)
        )
        return _details(evaluation.value, evaluation)

    def resolve_float_details(
        self,
        flag_key: str,
        default_value: float,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        evaluation = self.client.get_float_value_details(
            flag_key, default_value, to_user_data(evaluation_context)
        )
        return _details(evaluation.value, evaluation)

    def resolve_integer_details(
        self,
        flag_key: str,
        default_value: int,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        evaluation = self.client.get_int_value_details(
            flag_key, int(default_value), to_user_data(evaluation_context)
        )
        return _details(int(evaluation.value), evaluation)

    def resolve_object_details(
        self,
        flag_key: str,
        default_value: Any,
        evaluation_context: Mapping[str, Any] | None = None,
    ) -> ResolutionDetails:
        """Evaluate a string setting and parse its value as a JSON object."""
        evaluation = self.client.get_string_value_details(
            flag_key, "", to_user_data(evaluation_context)
        )
        if evaluation.is_default_value or evaluation.error is not None:
            # the client was given a stand-in default, so report the caller's one
            return _details(default_value, evaluation)

        try:
            parsed = json.loads(evaluation.value)
            if not isinstance(parsed, dict):
                raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
        except (TypeError, ValueError) as err:
            return ResolutionDetails(
                value=default_value,
                reason=Reason.ERROR,
                error=ResolutionError(
                    ErrorCode.TYPE_MISMATCH,
                    f"failed to unmarshal string flag as json: {err}",
                ),
            )
        return _details(parsed, evaluation)