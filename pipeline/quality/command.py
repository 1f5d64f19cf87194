"""
Gates backed by a real tool run inside the sandbox (test runner, tsc, eslint,
ruff, ...). They plug into the runner in place of the heuristic gates.
"""

import logging
import re
from typing import Callable, List, Optional

from sandbox import Sandbox
from .gates import Gate, GateIssue, SourceFile
from .testing import parse_test_output

logger = logging.getLogger(__name__)

# src/app.ts(12,5): error TS2322: Type 'string' is not assignable to type 'number'.
_TSC_RE = re.compile(r"^(?P<file>[^\s(]+)\((?P<line>\d+),(?P<col>\d+)\):\s*(?P<sev>error|warning)\s+(?P<code>TS\d+):\s*(?P<msg>.*)$")
# src/app.py:3:1: F401 'os' imported but unused
_COLON_RE = re.compile(r"^(?P<file>[^\s:]+):(?P<line>\d+):(?P<col>\d+):\s*(?P<code>[A-Z]+\d*)?\s*(?P<msg>.*)$")

OutputParser = Callable[[str], List[GateIssue]]


def parse_tsc_output(output: str) -> List[GateIssue]:
    issues = []
    for line in output.split("\n"):
        m = _TSC_RE.match(line.strip())
        if m:
            issues.append(GateIssue(
                file=m.group("file"), line=int(m.group("line")), column=int(m.group("col")),
                severity=m.group("sev"), rule=m.group("code"), message=m.group("msg"),
            ))
    return issues


def parse_colon_output(output: str) -> List[GateIssue]:
    """file:line:col: CODE message, as printed by ruff, flake8, eslint --format unix."""
    issues = []
    for line in output.split("\n"):
        m = _COLON_RE.match(line.strip())
        if m:
            issues.append(GateIssue(
                file=m.group("file"), line=int(m.group("line")), column=int(m.group("col")),
                severity="error", rule=m.group("code") or "", message=m.group("msg"),
            ))
    return issues


def parse_test_issues(output: str) -> List[GateIssue]:
    summary = parse_test_output(output)
    if summary is None or summary.failed == 0:
        return []
    return [GateIssue(file="", severity="error", rule="tests-failed",
                      message=f"{summary.failed} of {summary.total} test(s) failed")]


class CommandGate(Gate):
    """Runs command in the sandbox; passes on exit code 0.

    parse_output turns the tool's output into issues for the report. A
    non-zero exit with no parsed issues still fails, with the output tail as
    the single issue.
    """

    def __init__(self, name: str, command: str, sandbox: Sandbox,
                 parse_output: Optional[OutputParser] = None, tail_lines: int = 20, **options):
        super().__init__(**options)
        self.name = name
        self.command = command
        self.sandbox = sandbox
        self.parse_output = parse_output
        self.tail_lines = tail_lines
        self._last_output = ""
        self._last_exit_code: Optional[int] = None

    def select(self, files: List[SourceFile]) -> List[SourceFile]:
        return list(files)

    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        logger.info(f"Gate {self.name}: running {self.command}")
        output, exit_code = self.sandbox.run_command(self.command)
        self._last_output = output
        self._last_exit_code = exit_code
        issues = self.parse_output(output) if self.parse_output else []
        if exit_code != 0 and not any(i.severity == "error" for i in issues):
            tail = "\n".join(output.strip().split("\n")[-self.tail_lines:])
            issues.append(GateIssue(
                file="", severity="error", rule="exit-code",
                message=f"`{self.command}` exited with {exit_code}" + (f"\n{tail}" if tail else ""),
            ))
        return issues

    def describe(self, files, issues, passed) -> str:
        status = "PASSED" if passed else "FAILED"
        return f"{self.name}: {status} (`{self.command}` exit {self._last_exit_code})"

    @classmethod
    def tests(cls, sandbox: Sandbox, command: str = "npm test --silent") -> "CommandGate":
        return cls("test", command, sandbox, parse_output=parse_test_issues)

    @classmethod
    def typescript(cls, sandbox: Sandbox, command: str = "npx tsc --noEmit") -> "CommandGate":
        return cls("typecheck", command, sandbox, parse_output=parse_tsc_output)

    @classmethod
    def linter(cls, sandbox: Sandbox, command: str = "ruff check --output-format concise .") -> "CommandGate":
        return cls("lint", command, sandbox, parse_output=parse_colon_output)
