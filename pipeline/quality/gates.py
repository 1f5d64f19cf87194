"""
Quality gate building blocks: source snapshots, issues, results and the Gate
base class every check implements.
"""

import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

SEVERITIES = ("error", "warning")

JS_EXTENSIONS = (".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx")
TS_EXTENSIONS = (".ts", ".tsx")
PY_EXTENSIONS = (".py",)
MARKUP_EXTENSIONS = (".jsx", ".tsx", ".html", ".htm", ".vue", ".svelte")

_TEST_FILE_RE = re.compile(
    r"(^|/)(__tests__/|tests?/)|\.(test|spec)\.[cm]?[jt]sx?$|(^|/)test_[^/]*\.py$|_test\.py$"
)


@dataclass(frozen=True)
class SourceFile:
    """Point-in-time snapshot of one project file"""
    path: str
    content: str

    @property
    def ext(self) -> str:
        return os.path.splitext(self.path)[1].lower()


FileLike = Union[SourceFile, Dict[str, Any], Tuple[str, str]]


def to_source_files(files: Optional[Iterable[FileLike]]) -> List[SourceFile]:
    """Accept SourceFile, {path, content} dicts or (path, content) pairs."""
    result = []
    for f in files or []:
        if isinstance(f, SourceFile):
            result.append(f)
        elif isinstance(f, dict):
            result.append(SourceFile(path=str(f["path"]), content=str(f.get("content", ""))))
        else:
            path, content = f
            result.append(SourceFile(path=str(path), content=str(content)))
    return result


def is_test_file(path: str) -> bool:
    return bool(_TEST_FILE_RE.search(path.replace(os.sep, "/")))


@dataclass
class GateIssue:
    """One finding of a gate"""
    file: str
    line: int = 0
    column: int = 0
    severity: str = "error"
    rule: str = ""
    message: str = ""

    def __str__(self) -> str:
        where = f"{self.file}:{self.line}:{self.column}" if self.line else self.file
        rule = f" ({self.rule})" if self.rule else ""
        return f"{where} {self.message}{rule}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "severity": self.severity,
            "rule": self.rule,
            "message": self.message,
        }


@dataclass
class GateResult:
    """Verdict of a single gate"""
    gate: str
    passed: bool
    issues: List[GateIssue] = field(default_factory=list)
    duration_ms: float = 0.0
    blocking: bool = True
    details: str = ""
    skipped: bool = False

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "warning")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gate": self.gate,
            "passed": self.passed,
            "blocking": self.blocking,
            "skipped": self.skipped,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
            "durationMs": round(self.duration_ms, 2),
            "details": self.details,
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass
class LineRule:
    """Regex checked against every line of a file"""
    pattern: Pattern
    rule: str
    message: str
    severity: str = "warning"


def rule(pattern: str, rule_id: str, message: str, severity: str = "warning", flags: int = 0) -> LineRule:
    return LineRule(re.compile(pattern, flags), rule_id, message, severity)


def scan_lines(source: SourceFile, rules: Sequence[LineRule]) -> List[GateIssue]:
    issues = []
    for lineno, line in enumerate(source.content.split("\n"), start=1):
        for r in rules:
            m = r.pattern.search(line)
            if m:
                issues.append(GateIssue(
                    file=source.path, line=lineno, column=m.start() + 1,
                    severity=r.severity, rule=r.rule, message=r.message,
                ))
    return issues


def line_of(content: str, offset: int) -> Tuple[int, int]:
    """1-based (line, column) of a character offset."""
    line = content.count("\n", 0, offset) + 1
    column = offset - (content.rfind("\n", 0, offset) + 1) + 1
    return line, column


class Gate(ABC):
    """A stateless check over a snapshot of files.

    Subclasses implement check(); run() filters the files the gate applies
    to and decides pass or fail. The runner adds timing and blocking.
    """

    name = "gate"
    extensions: Optional[Tuple[str, ...]] = None  # None: every file

    def __init__(self, ignore_patterns: Optional[List[str]] = None, **options):
        self.ignore_patterns = list(ignore_patterns or [])
        self.options = options

    def is_ignored(self, path: str) -> bool:
        """True when a path segment sequence matches an ignore pattern like 'dist/'."""
        normalized = path.replace(os.sep, "/")
        if normalized.startswith("./"):
            normalized = normalized[2:]
        padded = "/" + normalized
        for pattern in self.ignore_patterns:
            stem = pattern.rstrip("*").strip("/")
            if stem and (f"/{stem}/" in padded or padded.endswith(f"/{stem}")):
                return True
        return False

    def applies_to(self, source: SourceFile) -> bool:
        if self.is_ignored(source.path):
            return False
        return self.extensions is None or source.ext in self.extensions

    def select(self, files: List[SourceFile]) -> List[SourceFile]:
        return [f for f in files if self.applies_to(f)]

    def should_run(self, files: List[SourceFile]) -> bool:
        """Whether the runner should report this gate at all for these files."""
        return True

    @abstractmethod
    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        """Return every issue found in files (already filtered by applies_to)."""

    def evaluate(self, issues: List[GateIssue]) -> bool:
        """Default threshold: no errors."""
        return not any(i.severity == "error" for i in issues)

    def describe(self, files: List[SourceFile], issues: List[GateIssue], passed: bool) -> str:
        errors = sum(1 for i in issues if i.severity == "error")
        warnings = len(issues) - errors
        status = "PASSED" if passed else "FAILED"
        return f"{self.name}: {status} ({len(files)} file(s), {errors} error(s), {warnings} warning(s))"

    def run(self, files: List[SourceFile], preselected: bool = False) -> GateResult:
        """Check files. preselected skips the applies_to filter for explicit file lists."""
        selected = list(files) if preselected else self.select(files)
        issues = self.check(selected)
        passed = self.evaluate(issues)
        return GateResult(
            gate=self.name,
            passed=passed,
            issues=issues,
            details=self.describe(selected, issues, passed),
        )
