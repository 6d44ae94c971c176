from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple


CATALOG_VERSION = "v1"

CATEGORY_LABELS: Dict[str, str] = {
    "financial": "Financial Benefits & Costs",
    "token": "Token Usage & Pricing",
    "scoring": "Scores & Weights",
    "labor": "Labor & Operations",
    "risk": "Risk & Readiness",
    "timeline": "Timeline",
}
CATEGORY_ORDER: Tuple[str, ...] = tuple(CATEGORY_LABELS)


@dataclass(frozen=True)
class FormulaInput:
    name: str
    label: str
    category: str
    unit: str | None = None
    description: str | None = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "name": self.name,
            "label": self.label,
            "category": self.category,
        }
        if self.unit:
            payload["unit"] = self.unit
        if self.description:
            payload["description"] = self.description
        return payload


INPUTS: Tuple[FormulaInput, ...] = (
    # financial
    FormulaInput("revenueBenefit", "Revenue Benefit", "financial", "$", "Annual revenue uplift across use cases"),
    FormulaInput("costBenefit", "Cost Benefit", "financial", "$", "Annual cost reduction"),
    FormulaInput("cashFlowBenefit", "Cash Flow Benefit", "financial", "$", "Annual working-capital improvement"),
    FormulaInput("riskBenefit", "Risk Benefit", "financial", "$", "Annual avoided losses from reduced risk"),
    FormulaInput("totalAnnualImpact", "Total Annual Impact", "financial", "$", "Sum of all benefit categories"),
    FormulaInput("maxTotalImpact", "Max Total Impact", "financial", "$", "Largest total annual impact across use cases"),
    FormulaInput("implementationCost", "Implementation Cost", "financial", "$", "One-off build and rollout cost"),
    FormulaInput("annualTokenCost", "Annual Token Cost", "financial", "$", "Yearly model usage spend"),
    FormulaInput("netBenefit", "Net Benefit", "financial", "$", "Annual benefit after costs"),
    # token
    FormulaInput("avgInputTokens", "Avg Input Tokens / Run", "token", "tokens"),
    FormulaInput("avgOutputTokens", "Avg Output Tokens / Run", "token", "tokens"),
    FormulaInput("inputTokenCost", "Input Token Price", "token", "$ / 1M tokens"),
    FormulaInput("outputTokenCost", "Output Token Price", "token", "$ / 1M tokens"),
    FormulaInput("runsPerMonth", "Runs per Month", "token", "runs"),
    FormulaInput("runsPerYear", "Runs per Year", "token", "runs"),
    FormulaInput("cachingEffectiveness", "Caching Effectiveness", "token", "%", "Share of input tokens served from the prompt cache"),
    FormulaInput("promptCachingDiscount", "Prompt Caching Discount", "token", "%", "Price reduction on cached input tokens"),
    # scoring
    FormulaInput("valueScore", "Value Score", "scoring", "0-100"),
    FormulaInput("ttvScore", "Time-to-Value Score", "scoring", "0-100"),
    FormulaInput("effortScore", "Effort Score", "scoring", "0-100"),
    FormulaInput("priorityScore", "Priority Score", "scoring", "0-100"),
    FormulaInput("weightValue", "Priority Weight: Value", "scoring", "%", "Value + TTV + Effort weights sum to 100"),
    FormulaInput("weightTtv", "Priority Weight: Time-to-Value", "scoring", "%"),
    FormulaInput("weightEffort", "Priority Weight: Effort", "scoring", "%"),
    # labor
    FormulaInput("hoursSaved", "Hours Saved", "labor", "hrs / year"),
    FormulaInput("loadedHourlyRate", "Loaded Hourly Rate", "labor", "$ / hr"),
    FormulaInput("fteCount", "FTEs Affected", "labor", "FTE"),
    FormulaInput("manualDataEntryHours", "Manual Data Entry Hours", "labor", "hrs / month"),
    FormulaInput("productivityImprovement", "Productivity Improvement", "labor", "%"),
    FormulaInput("cycleTimeReduction", "Cycle Time Reduction", "labor", "%"),
    FormulaInput("errorReduction", "Error Reduction", "labor", "%"),
    # risk
    FormulaInput("probabilityOfSuccess", "Probability of Success", "risk", "%"),
    FormulaInput("confidenceAdjustment", "Confidence Adjustment", "risk", "%", "Risk-adjusted probability factor for benefits"),
    FormulaInput("adoptionRate", "Projected Adoption Rate", "risk", "%"),
    FormulaInput("dataReadinessScore", "Data Readiness Score", "risk", "1-5"),
    FormulaInput("changeMgmtScore", "Change Management Readiness", "risk", "1-5"),
    # timeline
    FormulaInput("timeToValueMonths", "Time to Value", "timeline", "months"),
    FormulaInput("amortizationYears", "Amortization Period", "timeline", "years"),
)

INPUT_MAP: Dict[str, FormulaInput] = {item.name: item for item in INPUTS}


def input_names() -> FrozenSet[str]:
    return frozenset(INPUT_MAP)


def list_inputs() -> Dict[str, Dict[str, object]]:
    return {item.name: item.to_dict() for item in INPUTS}


def list_inputs_by_category() -> Dict[str, List[Dict[str, object]]]:
    grouped: Dict[str, List[Dict[str, object]]] = {category: [] for category in CATEGORY_ORDER}
    for item in INPUTS:
        grouped[item.category].append(item.to_dict())
    return grouped


def catalog_payload() -> Dict[str, object]:
    return {
        "version": CATALOG_VERSION,
        "categories": dict(CATEGORY_LABELS),
        "inputs": list_inputs(),
        "grouped": list_inputs_by_category(),
    }
