from __future__ import annotations

import threading

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from formulary.app.defaults import DEFAULT_FORMULAS
from formulary.app.errors import ActivationConflictError, FormulaNotFoundError, InvalidFormulaError, InvalidScopeError
from formulary.app.models import Base, FormulaConfig
from formulary.app.scope import FormulaScope, ScopeLevel, resolution_chain
from formulary.app.store import FormulaStore


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, future=True)
    with SessionLocal() as session:
        yield session


@pytest.fixture()
def store(session: Session) -> FormulaStore:
    return FormulaStore(session)


def _active(store: FormulaStore, scope: FormulaScope) -> list[FormulaConfig]:
    rows = store.list_versions(scope.report_id, scope.field_key, scope.use_case_id)
    return [row for row in rows if row.is_active]


def test_versions_increase_per_scope(store: FormulaStore) -> None:
    scope = FormulaScope.for_report("netBenefit", "R1")
    first = store.create(scope, "One", "totalAnnualImpact - annualTokenCost")
    second = store.create(scope, "Two", "totalAnnualImpact", make_active=False)
    third = store.create(scope, "Three", "totalAnnualImpact * 2")
    assert [first.version, second.version, third.version] == [1, 2, 3]

    other = store.create(FormulaScope.for_report("netBenefit", "R2"), "Other", "1")
    assert other.version == 1

    versions = store.list_versions("R1", "netBenefit")
    assert [row.version for row in versions] == [3, 2, 1]


def test_single_active_per_scope(store: FormulaStore) -> None:
    scope = FormulaScope.for_report("valueScore", "R1")
    first = store.create(scope, "First", "1")
    second = store.create(scope, "Second", "2")
    active = _active(store, scope)
    assert [row.id for row in active] == [second.id]
    assert first.is_active is False

    inactive = store.create(scope, "Draft", "3", make_active=False)
    assert [row.id for row in _active(store, scope)] == [second.id]

    store.activate(inactive.id)
    assert [row.id for row in _active(store, scope)] == [inactive.id]

    store.activate(inactive.id)
    assert [row.id for row in _active(store, scope)] == [inactive.id]


def test_activation_does_not_touch_other_scopes(store: FormulaStore) -> None:
    global_config = store.create(FormulaScope.global_default("ttvScore"), "Global", "1")
    report_config = store.create(FormulaScope.for_report("ttvScore", "R1"), "Report", "2")
    use_case_config = store.create(FormulaScope.for_use_case("ttvScore", "R1", "U1"), "Use case", "3")
    store.activate(report_config.id)
    assert global_config.is_active is True
    assert report_config.is_active is True
    assert use_case_config.is_active is True


def test_resolution_tiering(store: FormulaStore) -> None:
    global_config = store.create(FormulaScope.global_default("priorityScore"), "Global", "1")
    report_config = store.create(FormulaScope.for_report("priorityScore", "R1"), "Report", "2")
    use_case_config = store.create(FormulaScope.for_use_case("priorityScore", "R1", "U1"), "Use case", "3")

    assert store.get_active("R1", "priorityScore", "U1").id == use_case_config.id
    assert store.get_active("R1", "priorityScore", "U2").id == report_config.id
    assert store.get_active("R1", "priorityScore").id == report_config.id
    assert store.get_active("R9", "priorityScore", "U1").id == global_config.id
    assert store.get_active(None, "priorityScore").id == global_config.id
    assert store.get_active("R1", "netBenefit", "U1") is None


def test_inactive_specific_scope_falls_back(store: FormulaStore) -> None:
    report_config = store.create(FormulaScope.for_report("ttvScore", "R1"), "Report", "2")
    store.create(FormulaScope.for_use_case("ttvScore", "R1", "U1"), "Draft", "3", make_active=False)
    assert store.get_active("R1", "ttvScore", "U1").id == report_config.id


def test_list_versions_across_use_cases(store: FormulaStore) -> None:
    store.create(FormulaScope.for_report("valueScore", "R1"), "Report", "1")
    store.create(FormulaScope.for_use_case("valueScore", "R1", "U1"), "U1", "2")
    store.create(FormulaScope.for_use_case("valueScore", "R1", "U2"), "U2", "3")
    store.create(FormulaScope.for_report("valueScore", "R2"), "Elsewhere", "4")

    everything = store.list_versions("R1", "valueScore", any_use_case=True)
    assert sorted(row.label for row in everything) == ["Report", "U1", "U2"]
    assert [row.label for row in store.list_versions("R1", "valueScore", "U2")] == ["U2"]


def test_get_by_id_not_found(store: FormulaStore) -> None:
    with pytest.raises(FormulaNotFoundError) as exc:
        store.get_by_id("missing")
    assert exc.value.formula_id == "missing"
    with pytest.raises(FormulaNotFoundError):
        store.activate("missing")


def test_conflicting_active_rows_are_reported(store: FormulaStore, session: Session) -> None:
    scope = FormulaScope.for_report("netBenefit", "R1")
    first = store.create(scope, "One", "1")
    second = store.create(scope, "Two", "2", make_active=False)
    session.execute(update(FormulaConfig).values(is_active=True))
    session.commit()

    with pytest.raises(ActivationConflictError) as exc:
        store.get_active("R1", "netBenefit")
    assert sorted(exc.value.active_ids) == sorted([first.id, second.id])

    store.activate(second.id)
    assert store.get_active("R1", "netBenefit").id == second.id


def test_create_rejects_bad_input(store: FormulaStore) -> None:
    scope = FormulaScope.for_report("netBenefit", "R1")
    with pytest.raises(InvalidFormulaError, match="Syntax error"):
        store.create(scope, "Broken", "a +")
    with pytest.raises(InvalidFormulaError, match="label"):
        store.create(scope, "  ", "a")
    with pytest.raises(InvalidFormulaError, match="input field"):
        store.create(scope, "Bad fields", "a", input_fields=["not valid"])
    with pytest.raises(InvalidFormulaError):
        store.create(scope, "Bad constant", "a", constants=[{"key": "a", "value": "x"}])
    assert store.list_versions("R1", "netBenefit") == []


def test_create_stores_metadata(store: FormulaStore) -> None:
    config = store.create(
        FormulaScope.for_use_case("netBenefit", "R1", "U1"),
        " Custom ",
        "totalAnnualImpact * share",
        constants=[{"key": "share", "label": "Share", "value": 0.5}],
        notes="Half of the impact",
    )
    assert config.label == "Custom"
    assert config.input_fields == ["totalAnnualImpact", "share"]
    assert config.formula_constants[0].value == 0.5
    payload = config.to_dict()
    assert payload["scopeLevel"] == "use_case"
    assert payload["isActive"] is True
    assert payload["createdBy"] == "user"
    assert payload["createdAt"].endswith("Z")


def test_seed_defaults_is_idempotent(store: FormulaStore) -> None:
    created = store.seed_defaults("R1")
    assert len(created) == len(DEFAULT_FORMULAS)
    assert store.seed_defaults("R1") == []

    for default in DEFAULT_FORMULAS:
        rows = store.list_versions("R1", default.field_key)
        assert len(rows) == 1
        assert rows[0].version == 1
        assert rows[0].is_active is True
        assert rows[0].created_by == "system"
        assert rows[0].expression == default.expression


def test_seed_defaults_skips_customised_fields(store: FormulaStore) -> None:
    custom = store.create(FormulaScope.for_report("netBenefit", "R1"), "Custom", "totalAnnualImpact")
    created = store.seed_defaults("R1")
    assert "netBenefit" not in {row.field_key for row in created}
    assert store.get_active("R1", "netBenefit").id == custom.id


def test_seed_global_defaults(store: FormulaStore) -> None:
    created = store.seed_defaults(None)
    assert {row.scope.level for row in created} == {ScopeLevel.GLOBAL}
    assert store.get_active("R7", "totalAnnualImpact", "U3").id == created[0].id


def test_concurrent_activation_leaves_one_active(tmp_path) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'formulas.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, future=True)
    scope = FormulaScope.for_report("ttvScore", "R1")
    with SessionLocal() as session:
        ids = [FormulaStore(session).create(scope, f"v{i}", str(i), make_active=False).id for i in range(6)]

    errors: list[BaseException] = []

    def worker(formula_id: str) -> None:
        try:
            with SessionLocal() as session:
                FormulaStore(session).activate(formula_id)
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(formula_id,)) for formula_id in ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    with SessionLocal() as session:
        assert len(_active(FormulaStore(session), scope)) == 1


def test_scope_rules() -> None:
    with pytest.raises(InvalidScopeError):
        FormulaScope("netBenefit", use_case_id="U1")
    with pytest.raises(InvalidScopeError):
        FormulaScope("net-benefit")
    assert FormulaScope("netBenefit", report_id=" ", use_case_id="").level is ScopeLevel.GLOBAL
    chain = resolution_chain("netBenefit", "R1", "U1")
    assert [scope.level for scope in chain] == [ScopeLevel.USE_CASE, ScopeLevel.REPORT, ScopeLevel.GLOBAL]
    assert [scope.level for scope in resolution_chain("netBenefit", None, "U1")] == [ScopeLevel.GLOBAL]


def test_string_input_fields_are_rejected(store: FormulaStore) -> None:
    scope = FormulaScope.for_report("netBenefit", "R1")
    with pytest.raises(InvalidFormulaError, match="not a string"):
        store.create(scope, "Fields", "totalAnnualImpact", input_fields="abc")
    assert store.list_versions("R1", "netBenefit") == []


@pytest.mark.parametrize("report_id, use_case_id", [(None, None), ("R1", None), ("R1", "U1")])
def test_duplicate_versions_are_rejected_by_the_database(session: Session, report_id, use_case_id) -> None:
    for label in ("First", "Second"):
        session.add(
            FormulaConfig(
                report_id=report_id,
                use_case_id=use_case_id,
                field_key="netBenefit",
                label=label,
                expression="1",
                version=1,
            )
        )
    with pytest.raises(IntegrityError):
        session.commit()
