from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class DefaultFormula:
    field_key: str
    label: str
    expression: str
    input_fields: Tuple[str, ...]
    description: str


DEFAULT_FORMULAS: Tuple[DefaultFormula, ...] = (
    DefaultFormula(
        field_key="totalAnnualImpact",
        label="Total Annual Impact (Default)",
        expression="revenueBenefit + costBenefit + cashFlowBenefit + riskBenefit",
        input_fields=("revenueBenefit", "costBenefit", "cashFlowBenefit", "riskBenefit"),
        description="Sum of all benefit categories",
    ),
    DefaultFormula(
        field_key="priorityScore",
        label="Priority Score (Default)",
        expression=(
            "(valueScore * weightValue / 100) + (ttvScore * weightTtv / 100)"
            " + ((100 - effortScore) * weightEffort / 100)"
        ),
        input_fields=("valueScore", "ttvScore", "effortScore", "weightValue", "weightTtv", "weightEffort"),
        description="Weighted combination of value, time-to-value, and effort scores",
    ),
    DefaultFormula(
        field_key="valueScore",
        label="Value Score (Default)",
        expression="(totalAnnualImpact / maxTotalImpact) * 100 * (probabilityOfSuccess / 100)",
        input_fields=("totalAnnualImpact", "maxTotalImpact", "probabilityOfSuccess"),
        description="Normalized value score adjusted by probability",
    ),
    DefaultFormula(
        field_key="ttvScore",
        label="TTV Score (Default)",
        expression="max(0, 100 - (timeToValueMonths * 10))",
        input_fields=("timeToValueMonths",),
        description="Time-to-value score (higher = faster implementation)",
    ),
    DefaultFormula(
        field_key="effortScore",
        label="Effort Score (Default)",
        expression="effortScore",
        input_fields=("effortScore",),
        description="Direct pass-through of effort estimate",
    ),
    DefaultFormula(
        field_key="annualTokenCost",
        label="Annual Token Cost (Default)",
        expression=(
            "(avgInputTokens * inputTokenCost / 1000000 + avgOutputTokens * outputTokenCost / 1000000)"
            " * runsPerYear * (1 - cachingEffectiveness * promptCachingDiscount / 10000)"
        ),
        input_fields=(
            "avgInputTokens",
            "inputTokenCost",
            "avgOutputTokens",
            "outputTokenCost",
            "runsPerYear",
            "cachingEffectiveness",
            "promptCachingDiscount",
        ),
        description="Annual AI token costs with caching discount",
    ),
    DefaultFormula(
        field_key="netBenefit",
        label="Net Benefit (Default)",
        expression="totalAnnualImpact - annualTokenCost - implementationCost / 3",
        input_fields=("totalAnnualImpact", "annualTokenCost", "implementationCost"),
        description="Net annual benefit after costs (3-year amortization)",
    ),
)

DEFAULT_FORMULA_MAP: Dict[str, DefaultFormula] = {item.field_key: item for item in DEFAULT_FORMULAS}

CALCULATED_FIELD_KEYS: Tuple[str, ...] = tuple(DEFAULT_FORMULA_MAP)
