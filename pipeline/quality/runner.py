"""
Quality gate runner: runs the enabled gates in a fixed order over a file
snapshot and aggregates their verdicts.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from config import GateSettings, default_gate_settings
from .gates import Gate, GateIssue, GateResult, FileLike, is_test_file, to_source_files
from .lint import LintGate
from .typecheck import TypeCheckGate
from .testing import TestGate
from .security import SecurityGate
from .accessibility import AccessibilityGate

logger = logging.getLogger(__name__)

GATE_ORDER = ("lint", "typecheck", "test", "security", "accessibility")

GATE_CLASSES = {
    "lint": LintGate,
    "typecheck": TypeCheckGate,
    "test": TestGate,
    "security": SecurityGate,
    "accessibility": AccessibilityGate,
}


@dataclass
class QualityGateResult:
    """Aggregate verdict: passed only when every blocking gate passed"""
    passed: bool
    gates: List[GateResult] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)
    total_duration_ms: float = 0.0

    @property
    def passed_gates(self) -> List[str]:
        return [g.gate for g in self.gates if g.passed]

    @property
    def failed_gates(self) -> List[str]:
        return [g.gate for g in self.gates if not g.passed]

    def get(self, gate: str) -> Optional[GateResult]:
        for g in self.gates:
            if g.gate == gate:
                return g
        return None

    def blocking_issues(self) -> List[GateIssue]:
        """Issues of the failed blocking gates, the input of a fix pass."""
        issues = []
        for g in self.gates:
            if g.blocking and not g.passed:
                issues.extend(g.issues)
        return issues

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "total": len(self.gates),
            "passedGates": self.passed_gates,
            "failedGates": self.failed_gates,
            "blockedBy": list(self.blocked_by),
            "totalDurationMs": round(self.total_duration_ms, 2),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "gates": {g.gate: g.to_dict() for g in self.gates},
            "summary": self.summary,
        }


class QualityGateRunner:
    """Runs lint, typecheck, test, security and accessibility in that order.

    settings maps gate name to GateSettings (enabled, blocking, options);
    gates maps gate name to a Gate instance that replaces the default one,
    e.g. a CommandGate running the project's real test suite.
    """

    def __init__(self, settings: Optional[Dict[str, GateSettings]] = None,
                 gates: Optional[Dict[str, Gate]] = None):
        self.settings = default_gate_settings()
        if settings:
            self.settings.update(settings)
        self.gates: Dict[str, Gate] = {}
        for name in GATE_ORDER:
            s = self.settings.get(name) or GateSettings(name=name)
            self.gates[name] = GATE_CLASSES[name](**s.options)
        if gates:
            self.gates.update(gates)

    def enabled_gates(self) -> List[str]:
        names = [n for n in GATE_ORDER if n in self.gates]
        names += [n for n in self.gates if n not in GATE_ORDER]
        return [n for n in names if self._settings_for(n).enabled]

    def _settings_for(self, name: str) -> GateSettings:
        return self.settings.get(name) or GateSettings(name=name)

    def run_gate(self, name: str, files, preselected: bool = False) -> GateResult:
        """Run one gate. Exceptions become a failed result instead of propagating."""
        gate = self.gates[name]
        blocking = self._settings_for(name).blocking
        start = time.perf_counter()
        try:
            runnable = bool(files) if preselected else gate.should_run(files)
            if not runnable:
                result = GateResult(gate=name, passed=True, skipped=True,
                                    details=f"{name}: SKIPPED (no applicable files)")
            else:
                result = gate.run(files, preselected=preselected)
        except Exception as e:
            logger.error(f"Gate {name} crashed: {e}", exc_info=True)
            result = GateResult(
                gate=name, passed=False,
                issues=[GateIssue(file="", severity="error", rule="gate-error", message=str(e))],
                details=f"{name}: ERROR ({e})",
            )
        result.gate = name
        result.blocking = blocking
        result.duration_ms = (time.perf_counter() - start) * 1000
        return result

    def run_all(self, files: Iterable[FileLike], test_files: Optional[Iterable[FileLike]] = None) -> QualityGateResult:
        """Run every enabled gate over files.

        When test_files is None the test gate picks test files out of files
        by name; an explicit list is used as-is and also scanned by the
        other gates.
        """
        sources = to_source_files(files)
        explicit_tests = to_source_files(test_files) if test_files is not None else None
        if explicit_tests is not None:
            known = {f.path for f in sources}
            sources = sources + [t for t in explicit_tests if t.path not in known]

        start = time.perf_counter()
        results = []
        for name in self.enabled_gates():
            if name == "test" and explicit_tests is not None:
                result = self.run_gate(name, explicit_tests, preselected=True)
            else:
                result = self.run_gate(name, sources)
            logger.info(result.details)
            results.append(result)

        blocked_by = [r.gate for r in results if r.blocking and not r.passed]
        total = (time.perf_counter() - start) * 1000
        test_count = sum(1 for f in sources if is_test_file(f.path)) if explicit_tests is None else len(explicit_tests)
        logger.info(f"Quality gates over {len(sources)} file(s) ({test_count} test file(s)): "
                    f"{'PASSED' if not blocked_by else 'BLOCKED by ' + ', '.join(blocked_by)}")
        return QualityGateResult(passed=not blocked_by, gates=results,
                                 blocked_by=blocked_by, total_duration_ms=total)


def format_results(result: QualityGateResult, max_issues: int = 10) -> str:
    """Human-readable report, one block per gate."""
    lines = ["Quality Gates: " + ("PASSED" if result.passed else "FAILED")]
    for g in result.gates:
        if g.skipped:
            mark = "-"
        else:
            mark = "✓" if g.passed else "✗"
        suffix = "" if g.blocking else " (advisory)"
        lines.append(f"  {mark} {g.details}{suffix} [{g.duration_ms:.0f}ms]")
        for issue in g.issues[:max_issues]:
            lines.append(f"      {issue.severity}: {issue}")
        if len(g.issues) > max_issues:
            lines.append(f"      ... and {len(g.issues) - max_issues} more")
    if result.blocked_by:
        lines.append("Blocked by: " + ", ".join(result.blocked_by))
    return "\n".join(lines)
