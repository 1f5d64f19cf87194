"""Tests for model tier routing and session cost tracking."""

import pytest

from config import model_config
from pipeline.router import TokenLedger, estimate_cost, format_selection_log, select_model
from pipeline.types import MODES, PHASES, mode_severity


class TestSelectModel:
    """Phase x mode routing table."""

    @pytest.mark.parametrize("phase", ["classify", "investigate", "verify"])
    @pytest.mark.parametrize("mode", MODES)
    def test_cheap_phases_always_lite(self, phase, mode):
        assert select_model(phase, mode).tier == "lite"

    @pytest.mark.parametrize("mode,tier", [
        ("question", "lite"),
        ("simple", "standard"),
        ("moderate", "standard"),
        ("complex", "pro"),
        ("mega-complex", "pro"),
    ])
    def test_execute(self, mode, tier):
        assert select_model("execute", mode).tier == tier

    def test_plan(self):
        assert select_model("plan", "moderate").tier == "standard"
        assert select_model("plan", "complex").tier == "pro"
        assert select_model("plan", "question").tier == "lite"

    def test_plan_upgrades_on_high_score(self):
        assert select_model("plan", "moderate", complexity_score=14).tier == "standard"
        selection = select_model("plan", "moderate", complexity_score=15)
        assert selection.tier == "pro"
        assert "15" in selection.reason

    def test_retry_upgrades_lite(self):
        assert select_model("execute", "question", is_retry=True).tier == "standard"
        assert select_model("verify", "question", is_retry=True).tier == "lite"

    def test_retry_never_downgrades(self):
        assert select_model("execute", "complex", is_retry=True).tier == "pro"

    def test_model_id_follows_tier(self):
        assert select_model("execute", "simple").model_id == model_config.standard_model
        assert select_model("execute", "complex").model_id == model_config.pro_model
        assert select_model("classify", "simple").model_id == model_config.lite_model

    def test_unknown_phase_raises(self):
        with pytest.raises(ValueError):
            select_model("deploy", "simple")

    def test_unknown_mode_routes_as_moderate(self):
        assert select_model("execute", "galactic").tier == "standard"

    def test_pure(self):
        for phase in PHASES:
            for mode in MODES:
                assert select_model(phase, mode, 7) == select_model(phase, mode, 7)

    def test_selection_log(self):
        line = format_selection_log(select_model("execute", "complex"), "complex", 12)
        assert "PRO" in line
        assert "complexity: 12" in line

    def test_mode_severity_order(self):
        assert [mode_severity(m) for m in MODES] == list(range(len(MODES)))
        assert mode_severity("unheard-of") == mode_severity("moderate")

        # execution tier never drops as severity rises
        ranks = {"lite": 0, "standard": 1, "pro": 2}
        tiers = [ranks[select_model("execute", m).tier] for m in MODES]
        assert tiers == sorted(tiers)


class TestTokenLedger:
    """Cost accounting per tier."""

    def test_estimate_cost(self):
        # standard: $3 in / $15 out per 1M
        assert estimate_cost("standard", 1_000_000, 1_000_000) == pytest.approx(18.0)

    def test_by_tier(self):
        ledger = TokenLedger()
        ledger.record("classify", "lite", 100, 10)
        ledger.record("execute", "standard", 1000, 500)
        ledger.record("execute", "standard", 1000, 500)
        totals = ledger.by_tier()
        assert totals["lite"] == {"input": 100, "output": 10}
        assert totals["standard"] == {"input": 2000, "output": 1000}
        assert totals["pro"] == {"input": 0, "output": 0}

    def test_savings_against_standard(self):
        ledger = TokenLedger()
        ledger.record("classify", "lite", 1_000_000, 0)
        cost = ledger.session_cost()
        assert cost["total"] == pytest.approx(1.0)
        assert cost["singleModelCost"] == pytest.approx(3.0)
        assert cost["savingsPercent"] == pytest.approx(200 / 3)

    def test_empty_session(self):
        cost = TokenLedger().session_cost()
        assert cost["total"] == 0
        assert cost["savingsPercent"] == 0.0
        assert "Total cost" in TokenLedger().summary()
