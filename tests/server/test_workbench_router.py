from __future__ import annotations

import pytest

from formulary.routers import workbench
from formulary.server import create_app


def test_inputs_route_returns_catalog() -> None:
    payload = workbench.get_inputs()
    assert payload["version"] == "v1"
    assert "timeToValueMonths" in payload["inputs"]


def test_validate_draft_accepts_aliases_and_constants() -> None:
    body = workbench.ValidateBody.model_validate(
        {
            "expression": "revenueBenefit * share + bonus",
            "extraKnownNames": ["bonus"],
            "constants": [{"key": "share", "value": 0.2}],
        }
    )
    payload = workbench.validate_draft(body)
    assert payload["isValid"] is True
    assert payload["usedVariables"] == ["revenueBenefit", "share", "bonus"]


def test_validate_draft_reports_unknowns() -> None:
    payload = workbench.validate_draft(workbench.ValidateBody(expression="revenueBenefit + x + y"))
    assert payload["isValid"] is False
    assert payload["missingVariables"] == ["x", "y"]


def test_preview_draft_returns_trace() -> None:
    body = workbench.PreviewBody(
        expression="round(a / b)",
        context={"a": 5, "b": 2},
        constants=[workbench.ConstantBody(key="b", value=4)],
    )
    payload = workbench.preview_draft(body)
    assert payload["success"] is True
    assert payload["value"] == 3
    assert [step["text"] for step in payload["steps"]] == ["5 / 2", "round(2.5)"]


def test_preview_draft_reports_missing_values() -> None:
    payload = workbench.preview_draft(workbench.PreviewBody(expression="a + b", context={"a": 1}))
    assert payload["success"] is False
    assert payload["errorKind"] == "MissingVariable"


def test_server_registers_workbench_and_health() -> None:
    app = create_app()
    paths = {getattr(route, "path", None) for route in app.routes}
    assert {"/api/workbench/inputs", "/api/workbench/validate", "/api/workbench/preview"} <= paths

    for route in app.routes:
        if getattr(route, "path", None) == "/health":
            assert route.endpoint() == {"status": "ok"}
            break
    else:
        pytest.fail("/health route is not registered")
