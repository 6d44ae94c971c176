from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from ..app.catalog import catalog_payload, input_names
from ..app.config import get_engine_settings
from ..app.evaluator import preview_formula
from ..app.validator import validate

router = APIRouter(prefix="/api/workbench", tags=["workbench"])
logger = logging.getLogger(__name__)


class ConstantBody(BaseModel):
    key: str
    value: float
    label: Optional[str] = None
    description: Optional[str] = None


class ValidateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expression: str
    extra_known_names: List[str] = Field(default_factory=list, alias="extraKnownNames")
    constants: List[ConstantBody] = Field(default_factory=list)


class PreviewBody(BaseModel):
    expression: str
    context: Dict[str, Any] = Field(default_factory=dict)
    constants: List[ConstantBody] = Field(default_factory=list)


@router.get("/inputs")
def get_inputs() -> Dict[str, Any]:
    return catalog_payload()


@router.post("/validate")
def validate_draft(body: ValidateBody) -> Dict[str, Any]:
    """Check a draft expression against the catalog plus the draft's own constants."""
    settings = get_engine_settings()
    known = set(input_names()) | set(body.extra_known_names) | {c.key for c in body.constants}
    result = validate(
        body.expression,
        known,
        max_length=settings.max_expression_length,
        max_depth=settings.max_nesting_depth,
    )
    if not result.is_valid:
        logger.debug("Draft rejected: %s", result.errors)
    return result.to_dict()


@router.post("/preview")
def preview_draft(body: PreviewBody) -> Dict[str, Any]:
    settings = get_engine_settings()
    result = preview_formula(
        body.expression,
        body.context,
        [c.model_dump(exclude_none=True) for c in body.constants],
        max_length=settings.max_expression_length,
        max_depth=settings.max_nesting_depth,
    )
    return result.to_dict()
