"""Regular-expression validators for flag values."""

from __future__ import annotations

import re

from ofcontrib.model import EvaluationDetails

HEX_COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}){1,2}\Z"


class ValidationError(ValueError):
    """Raised when a flag value fails validation."""


class RegexValidator:
    """Checks that a string flag value matches a regular expression."""

    def __init__(self, pattern: str) -> None:
        self.regular_expression = re.compile(pattern)

    def is_valid(self, details: EvaluationDetails) -> bool:
        """Return True, or raise ValidationError if the value does not match."""
        value = details.value
        if not isinstance(value, str):
            raise ValidationError("flag value isn't of type string")
        if self.regular_expression.search(value) is None:
            raise ValidationError("regex doesn't match on flag value")
        return True


def hex_validator() -> RegexValidator:
    """A validator accepting hex colours such as #123 or #112233."""
    return RegexValidator(HEX_COLOR_PATTERN)