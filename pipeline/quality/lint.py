"""
Lint gate: line-level style and safety rules, with error and warning budgets.
"""

import logging
from typing import List, Optional

from .gates import Gate, GateIssue, SourceFile, JS_EXTENSIONS, TS_EXTENSIONS, PY_EXTENSIONS, rule, scan_lines

logger = logging.getLogger(__name__)

LINT_EXTENSIONS = JS_EXTENSIONS + PY_EXTENSIONS + (".css", ".scss", ".html", ".vue", ".svelte")

COMMON_RULES = [
    rule(r"\b(TODO|FIXME|HACK|XXX):", "no-warning-comments", "Address TODO/FIXME comments"),
]

JS_RULES = [
    rule(r"eval\s*\(", "no-eval", "eval() is dangerous", "error"),
    rule(r"new\s+Function\s*\(", "no-new-func", "Function constructor is dangerous", "error"),
    rule(r"dangerouslySetInnerHTML", "react/no-danger", "Avoid dangerouslySetInnerHTML", "error"),
    rule(r"//\s*@ts-(ignore|nocheck)", "@typescript-eslint/ban-ts-comment", "Avoid @ts-ignore/@ts-nocheck comments"),
    rule(r"\bkey=\{(index|i|idx)\}", "react/no-array-index-key", "Avoid using array index as key"),
    rule(r"console\.(log|debug|info)\s*\(", "no-console", "Remove console statements"),
    rule(r"^\s*debugger\s*;?\s*$", "no-debugger", "Remove debugger statements", "error"),
]

TS_RULES = [
    rule(r"(:\s*any\b|\bas\s+any\b|<any>)", "@typescript-eslint/no-explicit-any", "Avoid using `any` type", "error"),
]

PY_RULES = [
    rule(r"(?<![\w.])eval\s*\(", "no-eval", "eval() is dangerous", "error"),
    rule(r"(?<![\w.])exec\s*\(", "no-exec", "exec() is dangerous", "error"),
    rule(r"\bbreakpoint\(\)|\bpdb\.set_trace\(\)", "no-debugger", "Remove debugger calls", "error"),
    rule(r"^\s*except\s*:", "no-bare-except", "Catch a specific exception class"),
    rule(r"^\s*print\(", "no-print", "Use logging instead of print"),
]


class LintGate(Gate):
    """Style and safety lint. Fails over max_errors errors or max_warnings warnings."""

    name = "lint"
    extensions = LINT_EXTENSIONS

    def __init__(self, max_errors: int = 0, max_warnings: int = 10, max_line_length: int = 120,
                 ignore_patterns: Optional[List[str]] = None, **options):
        super().__init__(ignore_patterns=ignore_patterns, **options)
        self.max_errors = max_errors
        self.max_warnings = max_warnings
        self.max_line_length = max_line_length

    def _rules_for(self, source: SourceFile):
        rules = list(COMMON_RULES)
        if source.ext in JS_EXTENSIONS:
            rules += JS_RULES
        if source.ext in TS_EXTENSIONS:
            rules += TS_RULES
        if source.ext in PY_EXTENSIONS:
            rules += PY_RULES
        return rules

    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        issues = []
        for source in files:
            issues.extend(scan_lines(source, self._rules_for(source)))
            for lineno, line in enumerate(source.content.split("\n"), start=1):
                if len(line) > self.max_line_length:
                    issues.append(GateIssue(
                        file=source.path, line=lineno, column=self.max_line_length + 1,
                        severity="warning", rule="max-len",
                        message=f"Line exceeds {self.max_line_length} characters ({len(line)})",
                    ))
                stripped = line.rstrip("\r")
                if stripped != stripped.rstrip():
                    issues.append(GateIssue(
                        file=source.path, line=lineno, column=len(stripped.rstrip()) + 1,
                        severity="warning", rule="no-trailing-spaces", message="Trailing whitespace",
                    ))
        logger.debug(f"Lint found {len(issues)} issue(s) in {len(files)} file(s)")
        return issues

    def evaluate(self, issues: List[GateIssue]) -> bool:
        errors = sum(1 for i in issues if i.severity == "error")
        warnings = len(issues) - errors
        return errors <= self.max_errors and warnings <= self.max_warnings
