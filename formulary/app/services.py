from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from .catalog import catalog_payload, input_names
from .config import EngineSettings
from .defaults import CALCULATED_FIELD_KEYS
from .derivation import FieldFormula, derive_fields
from .errors import ErrorKind, FormulaNotFoundError, InvalidFormulaError
from .evaluator import EvaluationResult, FormulaConstant, coerce_constants, evaluate, preview_formula
from .models import FormulaConfig
from .scope import FormulaScope
from .store import FormulaStore
from .validator import ValidationResult, validate

ConstantsInput = Optional[Iterable[FormulaConstant | Mapping[str, Any]]]


class FormulaService:
    def __init__(self, session: Session, settings: EngineSettings | None = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.store = FormulaStore(session)

    @property
    def _limits(self) -> Dict[str, int]:
        return {
            "max_length": self.settings.max_expression_length,
            "max_depth": self.settings.max_nesting_depth,
        }

    def list_available_inputs(self) -> Dict[str, object]:
        return catalog_payload()

    def validate_expression(self, expression: str, extra_known_names: Iterable[str] = ()) -> ValidationResult:
        known = set(input_names()) | set(extra_known_names)
        return validate(expression, known, **self._limits)

    def preview_formula(
        self, expression: str, context: Mapping[str, Any] | None = None, constants: ConstantsInput = None
    ) -> EvaluationResult:
        return preview_formula(expression, context or {}, constants, **self._limits)

    def evaluate_formula(
        self,
        formula_id: str | None = None,
        expression: str | None = None,
        context: Mapping[str, Any] | None = None,
        constants: ConstantsInput = None,
        trace: bool = False,
    ) -> EvaluationResult:
        """Evaluate a saved formula (by id) or an ad hoc expression.

        For a saved formula, any constants passed in replace the stored
        constants with the same key.
        """
        if formula_id:
            config = self.store.get_by_id(formula_id)
            try:
                merged = {c.key: c for c in config.formula_constants}
                merged.update({c.key: c for c in coerce_constants(constants)})
            except InvalidFormulaError as exc:
                return EvaluationResult.failure(ErrorKind.NUMERIC_ERROR, str(exc))
            return evaluate(config.expression, context or {}, list(merged.values()), trace=trace, **self._limits)
        if expression:
            return evaluate(expression, context or {}, constants, trace=trace, **self._limits)
        raise InvalidFormulaError("Either a formula id or an expression is required")

    def evaluate_field(
        self,
        report_id: str | None,
        field_key: str,
        context: Mapping[str, Any] | None = None,
        use_case_id: str | None = None,
    ) -> EvaluationResult:
        config = self.store.get_active(report_id, field_key, use_case_id)
        if config is None:
            raise FormulaNotFoundError(FormulaScope(field_key, report_id, use_case_id).describe())
        return evaluate(config.expression, context or {}, config.formula_constants, **self._limits)

    def derive_fields(
        self,
        report_id: str | None,
        context: Mapping[str, Any] | None = None,
        use_case_id: str | None = None,
        field_keys: Iterable[str] = CALCULATED_FIELD_KEYS,
    ) -> Dict[str, EvaluationResult]:
        formulas: List[FieldFormula] = []
        for field_key in field_keys:
            config = self.store.get_active(report_id, field_key, use_case_id)
            if config is not None:
                formulas.append(FieldFormula(field_key, config.expression, config.formula_constants))
        return derive_fields(formulas, context or {}, **self._limits)

    def create_formula(
        self,
        scope: FormulaScope,
        label: str,
        expression: str,
        input_fields: Iterable[str] | None = None,
        constants: ConstantsInput = None,
        notes: str | None = None,
        is_active: bool = True,
        created_by: str = "user",
    ) -> FormulaConfig:
        formula_constants = coerce_constants(constants)
        validation = self.validate_expression(expression, [c.key for c in formula_constants])
        if not validation.is_valid:
            raise InvalidFormulaError("Invalid formula", validation)
        return self.store.create(
            scope,
            label,
            expression,
            input_fields=input_fields if input_fields else validation.used_variables,
            constants=formula_constants,
            notes=notes,
            make_active=is_active,
            created_by=created_by,
        )

    def list_formulas(
        self,
        report_id: str | None,
        field_key: str,
        use_case_id: str | None = None,
        any_use_case: bool = False,
    ) -> List[FormulaConfig]:
        return self.store.list_versions(report_id, field_key, use_case_id, any_use_case=any_use_case)

    def get_formula(self, formula_id: str) -> FormulaConfig:
        return self.store.get_by_id(formula_id)

    def get_active_formula(
        self, report_id: str | None, field_key: str, use_case_id: str | None = None
    ) -> FormulaConfig | None:
        return self.store.get_active(report_id, field_key, use_case_id)

    def activate_formula(self, formula_id: str) -> FormulaConfig:
        return self.store.activate(formula_id)

    def seed_default_formulas(self, report_id: str | None) -> List[FormulaConfig]:
        return self.store.seed_defaults(report_id)
