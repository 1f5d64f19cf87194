"""
Quality gates - checks run over the files a build touched.

- gates: SourceFile, GateIssue, GateResult and the Gate base class
- lint / typecheck / testing / security / accessibility: the built-in gates
- command: CommandGate, running a real tool in the sandbox
- runner: QualityGateRunner and the aggregated QualityGateResult
"""

from .gates import (
    Gate,
    GateIssue,
    GateResult,
    SourceFile,
    is_test_file,
    to_source_files,
)
from .lint import LintGate
from .typecheck import TypeCheckGate
from .testing import TestGate, TestSummary, parse_test_output
from .security import SecurityGate
from .accessibility import AccessibilityGate
from .command import CommandGate, parse_tsc_output, parse_colon_output
from .runner import GATE_ORDER, QualityGateResult, QualityGateRunner, format_results

__all__ = [
    "Gate",
    "GateIssue",
    "GateResult",
    "SourceFile",
    "is_test_file",
    "to_source_files",

    "LintGate",
    "TypeCheckGate",
    "TestGate",
    "TestSummary",
    "parse_test_output",
    "SecurityGate",
    "AccessibilityGate",
    "CommandGate",
    "parse_tsc_output",
    "parse_colon_output",

    "GATE_ORDER",
    "QualityGateResult",
    "QualityGateRunner",
    "format_results",
]
