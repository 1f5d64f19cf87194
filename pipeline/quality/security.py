"""
Security gate: pattern scan for hardcoded credentials and dangerous sinks.
"""

import re
from typing import List, Optional

from .gates import Gate, GateIssue, SourceFile, PY_EXTENSIONS, rule, scan_lines

SECURITY_RULES = [
    rule(r"""api[_-]?key\s*[:=]\s*['"][^'"]+['"]""", "hardcoded-api-key", "Hardcoded API key detected", "error", re.I),
    rule(r"""password\s*[:=]\s*['"][^'"]+['"]""", "hardcoded-password", "Hardcoded password detected", "error", re.I),
    rule(r"""secret\s*[:=]\s*['"][^'"]+['"]""", "hardcoded-secret", "Hardcoded secret detected", "error", re.I),
    rule(r"-----BEGIN ([A-Z]+ )?PRIVATE KEY-----", "private-key", "Private key committed to source", "error"),
    rule(r"eval\s*\(", "no-eval", "eval() usage detected", "error"),
    rule(r"new\s+Function\s*\(", "no-new-func", "Function constructor usage detected", "error"),
    rule(r"dangerouslySetInnerHTML", "no-danger", "dangerouslySetInnerHTML usage", "error"),
    rule(r"\binnerHTML\s*=(?!=)", "no-inner-html", "innerHTML assignment detected", "error"),
]

PY_SECURITY_RULES = [
    rule(r"\bpickle\.loads?\s*\(", "no-pickle", "Unpickling data can execute code", "error"),
    rule(r"\bshell\s*=\s*True\b", "no-shell-true", "subprocess call with shell=True", "error"),
    rule(r"\byaml\.load\s*\((?!.*Loader)", "yaml-unsafe-load", "yaml.load without an explicit Loader", "error"),
]


class SecurityGate(Gate):
    """Fails when the number of findings exceeds max_issues (default 0)."""

    name = "security"

    def __init__(self, max_issues: int = 0, ignore_patterns: Optional[List[str]] = None, **options):
        super().__init__(ignore_patterns=ignore_patterns, **options)
        self.max_issues = max_issues

    def applies_to(self, source: SourceFile) -> bool:
        # lockfiles carry integrity hashes, not code
        if source.path.endswith(("package-lock.json", "yarn.lock", "pnpm-lock.yaml")):
            return False
        return super().applies_to(source)

    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        issues = []
        for source in files:
            rules = SECURITY_RULES + (PY_SECURITY_RULES if source.ext in PY_EXTENSIONS else [])
            issues.extend(scan_lines(source, rules))
        return issues

    def evaluate(self, issues: List[GateIssue]) -> bool:
        return len(issues) <= self.max_issues
