from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .defaults import DEFAULT_FORMULAS
from .errors import ActivationConflictError, ExpressionSyntaxError, FormulaNotFoundError, InvalidFormulaError
from .evaluator import FormulaConstant, coerce_constants
from .expression import free_variables, is_identifier, parse
from .models import FormulaConfig
from .scope import FormulaScope, resolution_chain

logger = logging.getLogger(__name__)

ScopeKey = Tuple[Optional[str], Optional[str], str]

_registry_lock = threading.Lock()
_scope_locks: Dict[ScopeKey, threading.Lock] = {}


def _lock_for(scope: FormulaScope) -> threading.Lock:
    with _registry_lock:
        lock = _scope_locks.get(scope.key)
        if lock is None:
            lock = _scope_locks[scope.key] = threading.Lock()
        return lock


def _nullable_eq(column, value: str | None):
    return column.is_(None) if value is None else column == value


class FormulaStore:
    """Versioned formula configs with at most one active config per exact scope.

    Every write runs as its own transaction while holding a lock for the
    scope it touches, so concurrent activations cannot leave two rows active.

    The lock is per process. Across processes, duplicate versions are
    rejected by the `uq_formula_scope_version` index (the losing write raises
    `IntegrityError`), and sibling rows are locked with `FOR UPDATE` on
    backends that support it. SQLite ignores `FOR UPDATE`, so activation
    there is only serialised within one process; `active_in_scope` still
    reports any resulting duplicate as an `ActivationConflictError`.
    """

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def _scope_query(self, scope: FormulaScope):
        return select(FormulaConfig).where(
            FormulaConfig.field_key == scope.field_key,
            _nullable_eq(FormulaConfig.report_id, scope.report_id),
            _nullable_eq(FormulaConfig.use_case_id, scope.use_case_id),
        )

    def list_versions(
        self,
        report_id: str | None,
        field_key: str,
        use_case_id: str | None = None,
        *,
        any_use_case: bool = False,
    ) -> List[FormulaConfig]:
        """Configs newest version first; `any_use_case` spans every use case of the report."""
        if any_use_case:
            stmt = select(FormulaConfig).where(
                FormulaConfig.field_key == field_key,
                _nullable_eq(FormulaConfig.report_id, report_id),
            )
            stmt = stmt.order_by(FormulaConfig.version.desc(), FormulaConfig.use_case_id)
        else:
            scope = FormulaScope(field_key, report_id=report_id, use_case_id=use_case_id)
            stmt = self._scope_query(scope).order_by(FormulaConfig.version.desc())
        return list(self.session.scalars(stmt))

    def get_by_id(self, formula_id: str) -> FormulaConfig:
        config = self.session.get(FormulaConfig, formula_id)
        if config is None:
            raise FormulaNotFoundError(formula_id)
        return config

    def active_in_scope(self, scope: FormulaScope) -> FormulaConfig | None:
        rows = list(self.session.scalars(self._scope_query(scope).where(FormulaConfig.is_active.is_(True))))
        if len(rows) > 1:
            logger.warning("Activation conflict in %s: %s", scope.describe(), [row.id for row in rows])
            raise ActivationConflictError(scope.describe(), [row.id for row in rows])
        return rows[0] if rows else None

    def get_active(
        self, report_id: str | None, field_key: str, use_case_id: str | None = None
    ) -> FormulaConfig | None:
        """Resolve the formula in effect: use case, then report, then global default."""
        for scope in resolution_chain(field_key, report_id, use_case_id):
            config = self.active_in_scope(scope)
            if config is not None:
                return config
        return None

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    @contextmanager
    def _scope_write(self, scope: FormulaScope) -> Iterator[None]:
        with _lock_for(scope):
            try:
                yield
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

    def _deactivate_siblings(self, scope: FormulaScope, keep_id: str | None = None) -> None:
        now = datetime.utcnow()
        siblings = self.session.scalars(
            self._scope_query(scope).where(FormulaConfig.is_active.is_(True)).with_for_update()
        )
        for sibling in siblings:
            if sibling.id != keep_id:
                sibling.is_active = False
                sibling.updated_at = now

    def _next_version(self, scope: FormulaScope) -> int:
        stmt = select(func.max(FormulaConfig.version)).where(
            FormulaConfig.field_key == scope.field_key,
            _nullable_eq(FormulaConfig.report_id, scope.report_id),
            _nullable_eq(FormulaConfig.use_case_id, scope.use_case_id),
        )
        current = self.session.scalar(stmt)
        return (current or 0) + 1

    def _insert(
        self,
        scope: FormulaScope,
        label: str,
        expression: str,
        input_fields: Sequence[str],
        constants: List[FormulaConstant],
        notes: str | None,
        make_active: bool,
        created_by: str,
    ) -> FormulaConfig:
        version = self._next_version(scope)
        if make_active:
            self._deactivate_siblings(scope)
        config = FormulaConfig(
            report_id=scope.report_id,
            use_case_id=scope.use_case_id,
            field_key=scope.field_key,
            label=label,
            expression=expression,
            input_fields=list(input_fields),
            constants=[constant.to_dict() for constant in constants],
            is_active=make_active,
            version=version,
            notes=notes,
            created_by=created_by,
        )
        self.session.add(config)
        self.session.flush()
        return config

    def create(
        self,
        scope: FormulaScope,
        label: str,
        expression: str,
        input_fields: Iterable[str] | None = None,
        constants: Iterable[FormulaConstant | Mapping[str, Any]] | None = None,
        notes: str | None = None,
        make_active: bool = True,
        created_by: str = "user",
    ) -> FormulaConfig:
        if not label or not str(label).strip():
            raise InvalidFormulaError("A label is required")
        try:
            tree = parse(expression)
        except ExpressionSyntaxError as exc:
            raise InvalidFormulaError(f"Syntax error: {exc.describe()}") from None
        if isinstance(input_fields, (str, bytes)):
            raise InvalidFormulaError("Input fields must be a list of names, not a string")
        fields = list(input_fields) if input_fields is not None else free_variables(tree)
        bad = [name for name in fields if not isinstance(name, str) or not is_identifier(name)]
        if bad:
            raise InvalidFormulaError(f"Invalid input field name(s): {', '.join(map(str, bad))}")
        formula_constants = coerce_constants(constants)

        with self._scope_write(scope):
            config = self._insert(
                scope,
                str(label).strip(),
                expression,
                fields,
                formula_constants,
                notes,
                make_active,
                created_by,
            )
        logger.info(
            "Created formula %s v%s for %s (active=%s)",
            config.id,
            config.version,
            scope.describe(),
            make_active,
        )
        return config

    def activate(self, formula_id: str) -> FormulaConfig:
        config = self.get_by_id(formula_id)
        scope = config.scope
        with self._scope_write(scope):
            self._deactivate_siblings(scope, keep_id=config.id)
            if not config.is_active:
                config.is_active = True
                config.updated_at = datetime.utcnow()
            self.session.flush()
        logger.info("Activated formula %s v%s for %s", config.id, config.version, scope.describe())
        return config

    def seed_defaults(self, report_id: str | None) -> List[FormulaConfig]:
        """Create an active version 1 for each default field the report has no formula for."""
        created: List[FormulaConfig] = []
        for default in DEFAULT_FORMULAS:
            scope = FormulaScope(default.field_key, report_id=report_id)
            with self._scope_write(scope):
                if self._next_version(scope) > 1:
                    continue
                created.append(
                    self._insert(
                        scope,
                        default.label,
                        default.expression,
                        default.input_fields,
                        [],
                        default.description,
                        True,
                        "system",
                    )
                )
        if created:
            logger.info(
                "Seeded %d default formula(s) for %s",
                len(created),
                f"report {report_id}" if report_id else "global scope",
            )
        return created
