"""
Model routing: picks the cheapest model tier that can handle a phase of a
request, and tracks what the session spent.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import get_model_config, model_for_tier
from .types import ModelSelection, TIERS, PHASES, MODES, DEFAULT_MODE, mode_severity

logger = logging.getLogger(__name__)

# USD per 1M tokens when the configured model has no catalog price
DEFAULT_TIER_PRICING: Dict[str, Dict[str, float]] = {
    "lite": {"input": 1.00, "output": 5.00},
    "standard": {"input": 3.00, "output": 15.00},
    "pro": {"input": 5.00, "output": 25.00},
}

# Phases that never need more than the cheapest tier
_ALWAYS_LITE = ("classify", "investigate", "verify")

# Plan upgrades to pro at this complexity score
PLAN_UPGRADE_SCORE = 15

_PRO_SEVERITY = mode_severity("complex")


def select_model(phase: str, mode: str, complexity_score: Optional[int] = None,
                 is_retry: bool = False) -> ModelSelection:
    """Choose a tier for one phase. Pure: same inputs, same selection."""
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase!r}")
    if mode not in MODES:
        logger.warning(f"Unknown mode {mode!r}, routing as {DEFAULT_MODE}")
        mode = DEFAULT_MODE

    if phase in _ALWAYS_LITE:
        tier = "lite"
        reason = f"{phase.capitalize()} always uses the cheapest tier"
    elif phase == "execute":
        if mode == "question":
            tier, reason = "lite", "Question mode, lite is sufficient"
        elif mode_severity(mode) < _PRO_SEVERITY:
            tier, reason = "standard", f"{mode.capitalize()} generation uses standard"
        else:
            tier, reason = "pro", f"{mode.capitalize()} generation requires pro reasoning"
    else:  # plan
        if mode_severity(mode) >= _PRO_SEVERITY:
            tier, reason = "pro", f"{mode.capitalize()} planning requires pro reasoning"
        elif complexity_score is not None and complexity_score >= PLAN_UPGRADE_SCORE:
            tier = "pro"
            reason = f"Complexity {complexity_score} >= {PLAN_UPGRADE_SCORE}, upgraded to pro"
        elif mode == "question":
            tier, reason = "lite", "Question mode, lite is sufficient"
        else:
            tier, reason = "standard", "Default standard for plan phase"

    if is_retry and tier == "lite" and phase in ("plan", "execute"):
        tier = "standard"
        reason = "Retry attempt, upgraded to standard"

    return ModelSelection(tier=tier, reason=reason, phase=phase, model_id=model_for_tier(tier))


def tier_pricing(tier: str) -> Dict[str, float]:
    """Per-1M token prices for the model configured for tier."""
    model = get_model_config(model_for_tier(tier))
    if "input_price" in model and "output_price" in model:
        return {"input": model["input_price"], "output": model["output_price"]}
    return DEFAULT_TIER_PRICING[tier]


def estimate_cost(tier: str, input_tokens: int, output_tokens: int) -> float:
    pricing = tier_pricing(tier)
    return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]


def format_selection_log(selection: ModelSelection, mode: str,
                         complexity_score: Optional[int] = None) -> str:
    complexity = f" (complexity: {complexity_score})" if complexity_score is not None else ""
    pricing = tier_pricing(selection.tier)
    cost = f"${pricing['input']:.2f}/${pricing['output']:.2f} per 1M"
    return (f"[router] {selection.phase}/{mode}{complexity} -> {selection.tier.upper()} "
            f"{selection.model_id} - {selection.reason} [{cost}]")


@dataclass
class TokenRecord:
    phase: str
    tier: str
    input_tokens: int
    output_tokens: int
    timestamp: float = field(default_factory=time.time)


class TokenLedger:
    """Token usage per phase and tier for one session"""

    def __init__(self):
        self._records: List[TokenRecord] = []
        self._lock = threading.Lock()

    def record(self, phase: str, tier: str, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            self._records.append(TokenRecord(phase, tier, int(input_tokens or 0), int(output_tokens or 0)))

    @property
    def records(self) -> List[TokenRecord]:
        with self._lock:
            return list(self._records)

    def by_tier(self) -> Dict[str, Dict[str, int]]:
        totals = {t: {"input": 0, "output": 0} for t in TIERS}
        for rec in self.records:
            totals[rec.tier]["input"] += rec.input_tokens
            totals[rec.tier]["output"] += rec.output_tokens
        return totals

    def session_cost(self) -> Dict[str, object]:
        """Actual cost per tier, plus savings versus running everything on standard."""
        totals = self.by_tier()
        by_tier = {t: estimate_cost(t, v["input"], v["output"]) for t, v in totals.items()}
        total = sum(by_tier.values())
        single = sum(estimate_cost("standard", v["input"], v["output"]) for v in totals.values())
        savings = ((single - total) / single * 100) if single > 0 else 0.0
        return {
            "byTier": by_tier,
            "total": total,
            "singleModelCost": single,
            "savingsPercent": savings,
        }

    def summary(self) -> str:
        totals = self.by_tier()
        cost = self.session_cost()
        lines = ["Session token usage:"]
        for tier in TIERS:
            lines.append(f"  {tier}: {totals[tier]['input']:,} in / {totals[tier]['output']:,} out "
                         f"(${cost['byTier'][tier]:.4f})")
        lines.append(f"  Total cost: ${cost['total']:.4f}")
        lines.append(f"  Savings: {cost['savingsPercent']:.1f}% vs standard-only "
                     f"(${cost['singleModelCost']:.4f})")
        return "\n".join(lines)
