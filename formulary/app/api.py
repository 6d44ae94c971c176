from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, Flask, current_app, jsonify, request

from .catalog import CATALOG_VERSION, list_inputs, list_inputs_by_category
from .config import get_engine_settings
from .database import session_scope
from .errors import ActivationConflictError, FormulaNotFoundError, InvalidFormulaError, InvalidScopeError
from .scope import FormulaScope
from .services import FormulaService


api = Blueprint("formulas", __name__, url_prefix="/api/formulas")


class PayloadError(ValueError):
    pass


def _service(session) -> FormulaService:
    return FormulaService(session, get_engine_settings(current_app.config))


def _body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise PayloadError("request body must be a JSON object")
    return payload


def _context(payload: Dict[str, Any]) -> Dict[str, Any]:
    context = payload.get("context") or {}
    if not isinstance(context, dict):
        raise PayloadError("context must be an object")
    return context


def _constants(payload: Dict[str, Any]) -> list | None:
    constants = payload.get("constants")
    if constants is not None and not isinstance(constants, list):
        raise PayloadError("constants must be a list")
    return constants


def _input_fields(payload: Dict[str, Any]) -> list | None:
    fields = payload.get("inputFields")
    if fields is not None and not isinstance(fields, list):
        raise PayloadError("inputFields must be a list")
    return fields


@api.errorhandler(PayloadError)
def _bad_request(exc: PayloadError):
    return jsonify({"error": str(exc)}), 400


@api.errorhandler(InvalidScopeError)
def _invalid_scope(exc: InvalidScopeError):
    return jsonify({"error": str(exc)}), 400


@api.errorhandler(InvalidFormulaError)
def _invalid_formula(exc: InvalidFormulaError):
    payload: Dict[str, Any] = {"error": str(exc)}
    if exc.validation is not None:
        payload["details"] = exc.validation.errors
        payload["missingVariables"] = exc.validation.missing_variables
    return jsonify(payload), 400


@api.errorhandler(FormulaNotFoundError)
def _not_found(exc: FormulaNotFoundError):
    return jsonify({"error": "Formula not found", "id": exc.formula_id}), 404


@api.errorhandler(ActivationConflictError)
def _conflict(exc: ActivationConflictError):
    return jsonify({"error": str(exc), "activeIds": exc.active_ids}), 409


@api.get("")
def list_formulas():
    field_key = request.args.get("fieldKey")
    if not field_key:
        raise PayloadError("fieldKey is required")
    report_id = request.args.get("reportId") or None
    use_case_given = "useCaseId" in request.args
    use_case_id = request.args.get("useCaseId") or None
    with session_scope() as session:
        service = _service(session)
        formulas = service.list_formulas(report_id, field_key, use_case_id, any_use_case=not use_case_given)
        active = service.get_active_formula(report_id, field_key, use_case_id)
        return jsonify(
            {
                "formulas": [formula.to_dict() for formula in formulas],
                "activeFormula": active.to_dict() if active else None,
                "availableInputs": list_inputs_by_category(),
            }
        )


@api.get("/inputs/available")
def available_inputs():
    return jsonify(
        {
            "version": CATALOG_VERSION,
            "inputs": list_inputs(),
            "grouped": list_inputs_by_category(),
        }
    )


@api.get("/<formula_id>")
def get_formula(formula_id: str):
    with session_scope() as session:
        return jsonify(_service(session).get_formula(formula_id).to_dict())


@api.post("")
def create_formula():
    payload = _body()
    field_key = payload.get("fieldKey")
    label = payload.get("label")
    expression = payload.get("expression")
    if not field_key or not label or not expression:
        raise PayloadError("fieldKey, label, and expression are required")
    scope = FormulaScope(
        field_key,
        report_id=payload.get("reportId"),
        use_case_id=payload.get("useCaseId"),
    )
    with session_scope() as session:
        formula = _service(session).create_formula(
            scope,
            label,
            expression,
            input_fields=_input_fields(payload),
            constants=_constants(payload),
            notes=payload.get("notes"),
            is_active=bool(payload.get("isActive", True)),
            created_by=payload.get("createdBy") or "user",
        )
        return jsonify(formula.to_dict())


@api.patch("/<formula_id>/activate")
def activate_formula(formula_id: str):
    with session_scope() as session:
        return jsonify(_service(session).activate_formula(formula_id).to_dict())


@api.post("/validate")
def validate_formula():
    payload = _body()
    expression = payload.get("expression")
    if not expression:
        raise PayloadError("Expression is required")
    extra = list(payload.get("extraKnownNames") or [])
    extra.extend(str(item.get("key")) for item in (_constants(payload) or []) if isinstance(item, dict))
    with session_scope() as session:
        return jsonify(_service(session).validate_expression(expression, extra).to_dict())


@api.post("/preview")
def preview_formula():
    payload = _body()
    expression = payload.get("expression")
    if not expression:
        raise PayloadError("Expression is required")
    with session_scope() as session:
        result = _service(session).preview_formula(expression, _context(payload), _constants(payload))
        return jsonify(result.to_dict())


@api.post("/evaluate")
def evaluate_formula():
    payload = _body()
    formula_id = payload.get("formulaId")
    expression = payload.get("expression")
    if not formula_id and not expression:
        raise PayloadError("Either formulaId or expression is required")
    with session_scope() as session:
        result = _service(session).evaluate_formula(
            formula_id=formula_id,
            expression=expression,
            context=_context(payload),
            constants=_constants(payload),
        )
        return jsonify(result.to_dict())


@api.post("/derive")
def derive_fields():
    payload = _body()
    with session_scope() as session:
        results = _service(session).derive_fields(
            payload.get("reportId") or None,
            _context(payload),
            use_case_id=payload.get("useCaseId") or None,
        )
        values = {key: result.value for key, result in results.items() if result.success}
        return jsonify(
            {
                "values": values,
                "results": {key: result.to_dict() for key, result in results.items()},
            }
        )


@api.post("/initialize/<report_id>")
def initialize_defaults(report_id: str):
    with session_scope() as session:
        formulas = _service(session).seed_default_formulas(report_id)
        return jsonify([formula.to_dict() for formula in formulas])


def register_api(app: Flask) -> None:
    app.register_blueprint(api)
