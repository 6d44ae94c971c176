from __future__ import annotations

import pytest

from formulary.app.catalog import (
    CATALOG_VERSION,
    CATEGORY_ORDER,
    INPUTS,
    catalog_payload,
    input_names,
    list_inputs_by_category,
)
from formulary.app.defaults import CALCULATED_FIELD_KEYS, DEFAULT_FORMULAS
from formulary.app.expression import free_variables, is_identifier, parse
from formulary.app.validator import validate


def test_input_names_are_unique_identifiers() -> None:
    names = [item.name for item in INPUTS]
    assert len(names) == len(set(names))
    assert all(is_identifier(name) for name in names)
    assert all(item.category in CATEGORY_ORDER for item in INPUTS)


def test_grouping_covers_every_input_once() -> None:
    grouped = list_inputs_by_category()
    assert list(grouped) == list(CATEGORY_ORDER)
    flattened = [entry["name"] for entries in grouped.values() for entry in entries]
    assert sorted(flattened) == sorted(input_names())


def test_catalog_payload_shape() -> None:
    payload = catalog_payload()
    assert payload["version"] == CATALOG_VERSION
    assert set(payload["inputs"]) == input_names()
    revenue = payload["inputs"]["revenueBenefit"]
    assert revenue["category"] == "financial"
    assert revenue["label"] == "Revenue Benefit"


@pytest.mark.parametrize("default", DEFAULT_FORMULAS, ids=lambda item: item.field_key)
def test_default_formulas_validate_against_catalog(default) -> None:
    result = validate(default.expression, input_names())
    assert result.is_valid, result.errors
    assert set(free_variables(parse(default.expression))) == set(default.input_fields)


def test_every_calculated_field_is_in_catalog() -> None:
    assert set(CALCULATED_FIELD_KEYS) <= input_names()
    assert CALCULATED_FIELD_KEYS[0] == "totalAnnualImpact"
