from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .evaluator import FormulaConstant
from .scope import FormulaScope


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _isoformat(value: datetime | None) -> str | None:
    return value.replace(microsecond=0).isoformat() + "Z" if value else None


class FormulaConfig(Base):
    __tablename__ = "formula_configs"
    __table_args__ = (
        Index("ix_formula_scope", "report_id", "use_case_id", "field_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    report_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    use_case_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    field_key: Mapped[str] = mapped_column(String(100))
    label: Mapped[str] = mapped_column(String(200))
    expression: Mapped[str] = mapped_column(Text)
    input_fields: Mapped[list] = mapped_column(JSON, default=list)
    constants: Mapped[list] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=1)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def scope(self) -> FormulaScope:
        return FormulaScope(self.field_key, report_id=self.report_id, use_case_id=self.use_case_id)

    @property
    def formula_constants(self) -> list[FormulaConstant]:
        return [FormulaConstant.from_value(item) for item in (self.constants or [])]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reportId": self.report_id,
            "useCaseId": self.use_case_id,
            "fieldKey": self.field_key,
            "scopeLevel": self.scope.level.value,
            "label": self.label,
            "expression": self.expression,
            "inputFields": list(self.input_fields or []),
            "constants": list(self.constants or []),
            "isActive": self.is_active,
            "version": self.version,
            "notes": self.notes,
            "createdBy": self.created_by,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


# NULL never equals NULL in a plain unique constraint, so global and
# report-level scopes are keyed on coalesced ids.
Index(
    "uq_formula_scope_version",
    func.coalesce(FormulaConfig.report_id, ""),
    func.coalesce(FormulaConfig.use_case_id, ""),
    FormulaConfig.field_key,
    FormulaConfig.version,
    unique=True,
)
