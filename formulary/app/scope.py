from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

from .errors import InvalidScopeError
from .expression import is_identifier


class ScopeLevel(str, Enum):
    GLOBAL = "global"
    REPORT = "report"
    USE_CASE = "use_case"


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class FormulaScope:
    """Exact scope of a formula family: (report?, use case?, field key)."""

    field_key: str
    report_id: str | None = None
    use_case_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "report_id", _blank_to_none(self.report_id))
        object.__setattr__(self, "use_case_id", _blank_to_none(self.use_case_id))
        if not isinstance(self.field_key, str) or not is_identifier(self.field_key):
            raise InvalidScopeError(f"Invalid field key: {self.field_key!r}")
        if self.use_case_id is not None and self.report_id is None:
            raise InvalidScopeError("A use-case scope needs a report id")

    @classmethod
    def global_default(cls, field_key: str) -> "FormulaScope":
        return cls(field_key)

    @classmethod
    def for_report(cls, field_key: str, report_id: str) -> "FormulaScope":
        return cls(field_key, report_id=report_id)

    @classmethod
    def for_use_case(cls, field_key: str, report_id: str, use_case_id: str) -> "FormulaScope":
        return cls(field_key, report_id=report_id, use_case_id=use_case_id)

    @property
    def level(self) -> ScopeLevel:
        if self.report_id is None:
            return ScopeLevel.GLOBAL
        if self.use_case_id is None:
            return ScopeLevel.REPORT
        return ScopeLevel.USE_CASE

    @property
    def key(self) -> Tuple[str | None, str | None, str]:
        return (self.report_id, self.use_case_id, self.field_key)

    def describe(self) -> str:
        if self.level is ScopeLevel.GLOBAL:
            return f"{self.field_key} (global)"
        if self.level is ScopeLevel.REPORT:
            return f"{self.field_key} (report {self.report_id})"
        return f"{self.field_key} (report {self.report_id}, use case {self.use_case_id})"


def resolution_chain(
    field_key: str, report_id: str | None = None, use_case_id: str | None = None
) -> List[FormulaScope]:
    """Scopes to consult for a field, most specific first."""
    report_id = _blank_to_none(report_id)
    use_case_id = _blank_to_none(use_case_id)
    chain: List[FormulaScope] = []
    if report_id is not None:
        if use_case_id is not None:
            chain.append(FormulaScope.for_use_case(field_key, report_id, use_case_id))
        chain.append(FormulaScope.for_report(field_key, report_id))
    chain.append(FormulaScope.global_default(field_key))
    return chain
