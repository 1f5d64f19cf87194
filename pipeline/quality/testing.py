"""
Test gate. Statically discovers test cases in test files; a CommandGate can
run the real test runner instead (see command.py), with parse_test_output
reading its summary.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from .gates import Gate, GateIssue, SourceFile, PY_EXTENSIONS, is_test_file

_JS_CASE_RE = re.compile(r"\b(it|test)(\.(only|skip|todo|each\([^)]*\)))?\s*\(")
_JS_SKIP_RE = re.compile(r"\b(it|test|describe)\.skip\s*\(|\bx(it|describe)\s*\(")
_JS_FOCUS_RE = re.compile(r"\b(it|test|describe)\.only\s*\(|\bf(it|describe)\s*\(")
_PY_CASE_RE = re.compile(r"^\s*(async\s+)?def\s+test\w*\s*\(", re.M)
_PY_SKIP_RE = re.compile(r"@pytest\.mark\.skip\b|@unittest\.skip\b")


@dataclass
class TestSummary:
    """Counts read from a test run or a static scan"""
    __test__ = False  # not a pytest class

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


class TestGate(Gate):
    """Deterministic static check of test files.

    Fails on focused tests (.only, fit, fdescribe), which would silently
    skip the rest of a suite, and on test files without any test case.
    """

    __test__ = False
    name = "test"

    def applies_to(self, source: SourceFile) -> bool:
        return not self.is_ignored(source.path) and is_test_file(source.path)

    def should_run(self, files: List[SourceFile]) -> bool:
        return bool(self.select(files))

    def summarize(self, files: List[SourceFile]) -> TestSummary:
        summary = TestSummary()
        for source in files:
            if source.ext in PY_EXTENSIONS:
                cases = len(_PY_CASE_RE.findall(source.content))
                skipped = len(_PY_SKIP_RE.findall(source.content))
            else:
                cases = len(_JS_CASE_RE.findall(source.content))
                skipped = len(_JS_SKIP_RE.findall(source.content))
            skipped = min(skipped, cases)
            summary.total += cases
            summary.skipped += skipped
            summary.passed += cases - skipped
        return summary

    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        issues = []
        for source in files:
            if source.ext in PY_EXTENSIONS:
                has_cases = bool(_PY_CASE_RE.search(source.content))
            else:
                has_cases = bool(_JS_CASE_RE.search(source.content))
                for lineno, line in enumerate(source.content.split("\n"), start=1):
                    m = _JS_FOCUS_RE.search(line)
                    if m:
                        issues.append(GateIssue(
                            file=source.path, line=lineno, column=m.start() + 1,
                            severity="error", rule="no-focused-tests",
                            message="Focused test skips the rest of the suite",
                        ))
            if not has_cases:
                issues.append(GateIssue(
                    file=source.path, severity="error", rule="no-empty-test-file",
                    message="Test file contains no test cases",
                ))
        return issues

    def describe(self, files, issues, passed) -> str:
        s = self.summarize(files)
        status = "PASSED" if passed else "FAILED"
        return f"test: {status} ({s.total} test(s) in {len(files)} file(s), {s.skipped} skipped)"


_JEST_LINE_RE = re.compile(r"^\s*Tests?(?!\s+Suites)\b:?", re.I)
_MOCHA_RE = re.compile(r"(\d+)\s+(passing|failing|pending)", re.I)
_PYTEST_LINE_RE = re.compile(r"^=+ .*\b(passed|failed|error|errors|skipped)\b.* in [\d.]+s", re.I)
_COUNT_RE = re.compile(r"(\d+)\s+(passed|failed|skipped|total|errors?|todo)", re.I)


def parse_test_output(output: str) -> Optional[TestSummary]:
    """Read the summary line of a Jest, Vitest, Mocha or pytest run. None if there is none."""
    found = None
    for line in (output or "").split("\n"):
        if _JEST_LINE_RE.match(line) or _PYTEST_LINE_RE.match(line.strip()):
            counts = {}
            for n, kind in _COUNT_RE.findall(line):
                kind = "error" if kind.lower().startswith("error") else kind.lower()
                counts[kind] = counts.get(kind, 0) + int(n)
            if not counts:
                continue
            failed = counts.get("failed", 0) + counts.get("error", 0)
            passed = counts.get("passed", 0)
            skipped = counts.get("skipped", 0) + counts.get("todo", 0)
            total = counts.get("total", passed + failed + skipped)
            found = TestSummary(total=total, passed=passed, failed=failed, skipped=skipped)
            continue
        mocha = _MOCHA_RE.findall(line)
        if mocha:
            if found is None:
                found = TestSummary()
            for n, kind in mocha:
                kind = kind.lower()
                if kind == "passing":
                    found.passed = int(n)
                elif kind == "failing":
                    found.failed = int(n)
                else:
                    found.skipped = int(n)
            found.total = found.passed + found.failed + found.skipped
    return found
