"""Hook that validates flag evaluation results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from ofcontrib.model import EvaluationDetails, HookContext


class Validator(Protocol):
    def is_valid(self, details: EvaluationDetails) -> Any: ...


@dataclass
class ValidatorHook:
    """Runs a validator on evaluation details after flag resolution.

    A failing validator's exception propagates out of ``after``.
    """

    validator: Validator

    def after(
        self,
        hook_context: HookContext,
        details: EvaluationDetails,
        hints: dict[str, Any] | None = None,
    ) -> None:
        self.validator.is_valid(details)