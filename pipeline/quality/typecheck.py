"""
Typecheck gate. Python sources are compiled with ast, JSON is decoded, and
TypeScript sources get heuristic checks standing in for a compiler run.
"""

import ast
import json
from typing import List, Optional

from .gates import Gate, GateIssue, SourceFile, TS_EXTENSIONS, PY_EXTENSIONS, rule, scan_lines

TYPECHECK_EXTENSIONS = TS_EXTENSIONS + PY_EXTENSIONS + (".json",)

TS_TYPE_RULES = [
    rule(r":\s*any\b", "TS7008", "Unexpected explicit `any` type", "error"),
    rule(r"\bas\s+any\b", "TS2352", "Cast to `any` defeats type checking", "error"),
    rule(r"//\s*@ts-expect-error", "ts-expect-error", "Suppressed type error"),
    rule(r"^export\s+(async\s+)?function\s+\w+\s*(<[^>]*>)?\s*\([^)]*\)\s*\{",
         "explicit-return-type", "Exported function has no return type"),
    rule(r"""from\s+['"](\.\./){3,}""", "import/no-deep-relative", "Deep relative import, use a path alias"),
    rule(r"""from\s+['"][^'"]+/index['"]""", "import/no-useless-path-segments", "Import the directory, not /index"),
]


class TypeCheckGate(Gate):
    """Fails when the number of type errors exceeds max_errors. Warnings never fail it."""

    name = "typecheck"
    extensions = TYPECHECK_EXTENSIONS

    def __init__(self, max_errors: int = 0, ignore_patterns: Optional[List[str]] = None, **options):
        super().__init__(ignore_patterns=ignore_patterns, **options)
        self.max_errors = max_errors

    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        issues = []
        for source in files:
            if source.ext in PY_EXTENSIONS:
                issues.extend(self._check_python(source))
            elif source.ext == ".json":
                issues.extend(self._check_json(source))
            else:
                issues.extend(scan_lines(source, TS_TYPE_RULES))
        return issues

    @staticmethod
    def _check_python(source: SourceFile) -> List[GateIssue]:
        try:
            ast.parse(source.content, filename=source.path)
        except SyntaxError as e:
            return [GateIssue(
                file=source.path, line=e.lineno or 0, column=e.offset or 0,
                severity="error", rule="syntax-error", message=e.msg or "invalid syntax",
            )]
        return []

    @staticmethod
    def _check_json(source: SourceFile) -> List[GateIssue]:
        if not source.content.strip():
            return []
        try:
            json.loads(source.content)
        except json.JSONDecodeError as e:
            return [GateIssue(
                file=source.path, line=e.lineno, column=e.colno,
                severity="error", rule="invalid-json", message=e.msg,
            )]
        return []

    def evaluate(self, issues: List[GateIssue]) -> bool:
        return sum(1 for i in issues if i.severity == "error") <= self.max_errors
