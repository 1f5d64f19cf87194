"""Tests for the quality gates and their runner."""

import pytest

from config import GateSettings
from pipeline.quality import (
    AccessibilityGate,
    CommandGate,
    Gate,
    LintGate,
    QualityGateRunner,
    SecurityGate,
    SourceFile,
    TestGate,
    TypeCheckGate,
    format_results,
    is_test_file,
    parse_test_output,
    parse_tsc_output,
)
from sandbox import MemorySandbox


def src(path, content):
    return SourceFile(path=path, content=content)


class TestRunnerAggregation:
    """Overall verdict from blocking gates."""

    def test_eval_fails_blocking_security(self):
        result = QualityGateRunner().run_all([src("src/a.js", "const x = eval('1+1');")])
        assert not result.passed
        assert "security" in result.blocked_by
        security = result.get("security")
        assert security.blocking
        assert any(i.rule == "no-eval" for i in security.issues)

    def test_long_line_is_only_a_lint_warning(self):
        line = "const message = '" + "x" * 130 + "';"
        result = QualityGateRunner().run_all([src("src/a.js", line)])
        lint = result.get("lint")
        assert lint.passed
        assert lint.warning_count == 1
        assert lint.error_count == 0
        assert result.passed

    def test_clean_files_pass(self):
        result = QualityGateRunner().run_all([
            src("src/math.ts", "export function add(a: number, b: number): number {\n  return a + b;\n}"),
            src("src/math.test.ts", "import { add } from './math';\ntest('adds', () => {\n  expect(add(1, 2)).toBe(3);\n});"),
        ])
        assert result.passed, format_results(result)
        assert result.blocked_by == []

    def test_fixed_order(self):
        result = QualityGateRunner().run_all([src("a.py", "x = 1")])
        assert [g.gate for g in result.gates] == ["lint", "typecheck", "test", "security", "accessibility"]

    def test_accessibility_is_advisory(self):
        result = QualityGateRunner().run_all([src("src/Logo.jsx", 'export const Logo = () => <img src="/logo.png" />;')])
        a11y = result.get("accessibility")
        assert not a11y.passed
        assert not a11y.blocking
        assert result.passed

    def test_disabled_gate_not_run(self):
        runner = QualityGateRunner(settings={"security": GateSettings(name="security", enabled=False)})
        result = runner.run_all([src("a.js", "eval('1')")])
        assert result.get("security") is None
        # lint still flags eval as an error
        assert result.blocked_by == ["lint"]

    def test_non_blocking_override(self):
        runner = QualityGateRunner(settings={
            "security": GateSettings(name="security", blocking=False),
            "lint": GateSettings(name="lint", blocking=False),
        })
        result = runner.run_all([src("a.js", "eval('1')")])
        assert result.passed
        assert set(result.failed_gates) == {"lint", "security"}

    def test_crashing_gate_fails_without_stopping_others(self):
        class Broken(Gate):
            name = "typecheck"

            def check(self, files):
                raise RuntimeError("checker crashed")

        result = QualityGateRunner(gates={"typecheck": Broken()}).run_all([src("a.ts", "const a = 1;")])
        typecheck = result.get("typecheck")
        assert not typecheck.passed
        assert "checker crashed" in typecheck.issues[0].message
        assert result.get("security") is not None
        assert result.blocked_by == ["typecheck"]

    def test_skipped_gates(self):
        result = QualityGateRunner().run_all([src("a.py", "x = 1")])
        assert result.get("test").skipped
        assert result.get("accessibility").skipped
        assert result.get("test").passed

    def test_explicit_test_files(self):
        result = QualityGateRunner().run_all(
            [src("a.js", "export const a = 1;")],
            test_files=[src("checks/a.js", "it.only('a', () => {});")],
        )
        test = result.get("test")
        assert not test.passed
        assert test.issues[0].rule == "no-focused-tests"

    def test_dict_inputs_and_report(self):
        result = QualityGateRunner().run_all([{"path": "a.js", "content": "eval('x')"}])
        data = result.to_dict()
        assert data["passed"] is False
        assert data["gates"]["security"]["errorCount"] == 1
        assert "durationMs" in data["gates"]["lint"]
        assert data["summary"]["blockedBy"] == ["lint", "security"]
        report = format_results(result)
        assert "Blocked by: lint, security" in report

    def test_blocking_issues(self):
        result = QualityGateRunner().run_all([src("a.js", "eval('x')")])
        rules = {i.rule for i in result.blocking_issues()}
        assert rules == {"no-eval"}


class TestLintGate:

    def test_warning_limit(self):
        content = "\n".join("console.log(%d);" % i for i in range(11))
        assert not LintGate().run([src("a.js", content)]).passed
        assert LintGate(max_warnings=20).run([src("a.js", content)]).passed

    def test_trailing_whitespace(self):
        issues = LintGate().run([src("a.py", "x = 1   \ny = 2")]).issues
        assert [(i.rule, i.line) for i in issues] == [("no-trailing-spaces", 1)]

    def test_python_rules(self):
        issues = LintGate().run([src("a.py", "try:\n    pass\nexcept:\n    breakpoint()")]).issues
        assert {i.rule for i in issues} == {"no-bare-except", "no-debugger"}

    def test_ts_any_is_error(self):
        result = LintGate().run([src("a.ts", "let x: any = 1;")])
        assert not result.passed

    def test_ignore_patterns_match_path_segments(self):
        gate = LintGate(ignore_patterns=["dist/", "build/"])
        assert gate.is_ignored("dist/bundle.js")
        assert gate.is_ignored("./packages/web/build/out.js")
        assert not gate.is_ignored("src/buildHelpers.js")

    def test_other_extensions_skipped(self):
        assert LintGate().run([src("notes.md", "eval(")]).issues == []


class TestTypeCheckGate:

    def test_python_syntax_error(self):
        result = TypeCheckGate().run([src("a.py", "def broken(:\n    pass")])
        assert not result.passed
        assert result.issues[0].rule == "syntax-error"

    def test_invalid_json(self):
        result = TypeCheckGate().run([src("package.json", '{"name": }')])
        assert not result.passed

    def test_ts_rules(self):
        content = "export function run(x) {\n  return x as any;\n}"
        result = TypeCheckGate().run([src("a.ts", content)])
        rules = {i.rule for i in result.issues}
        assert "explicit-return-type" in rules
        assert "TS2352" in rules
        assert not result.passed
        assert TypeCheckGate(max_errors=1).run([src("a.ts", content)]).passed


class TestTestGate:

    def test_is_test_file(self):
        assert is_test_file("src/a.test.ts")
        assert is_test_file("src/__tests__/a.js")
        assert is_test_file("test_app.py")
        assert is_test_file("tests/helpers.py")
        assert not is_test_file("src/testimony.ts")

    def test_focused_test_fails(self):
        result = TestGate().run([src("a.test.js", "describe('x', () => {\n  fit('y', () => {});\n});")])
        assert not result.passed

    def test_empty_test_file_fails(self):
        result = TestGate().run([src("a.test.js", "// nothing yet")])
        assert [i.rule for i in result.issues] == ["no-empty-test-file"]

    def test_summary(self):
        gate = TestGate()
        files = [
            src("test_a.py", "def test_one():\n    pass\n\n@pytest.mark.skip\ndef test_two():\n    pass"),
            src("a.spec.ts", "it('a', () => {});\nit.skip('b', () => {});"),
        ]
        summary = gate.summarize(files)
        assert (summary.total, summary.passed, summary.skipped) == (4, 2, 2)

    @pytest.mark.parametrize("output,expected", [
        ("Tests:       1 failed, 4 passed, 5 total", (5, 4, 1)),
        ("Test Suites: 1 passed, 1 total\nTests:       3 passed, 3 total", (3, 3, 0)),
        ("===== 2 failed, 10 passed in 1.23s =====", (12, 10, 2)),
        ("  7 passing (20ms)\n  1 failing", (8, 7, 1)),
    ])
    def test_parse_output(self, output, expected):
        summary = parse_test_output(output)
        assert (summary.total, summary.passed, summary.failed) == expected

    def test_parse_output_without_summary(self):
        assert parse_test_output("npm ERR! missing script: test") is None


class TestSecurityGate:

    def test_secrets(self):
        result = SecurityGate().run([src("config.ts", 'const apiKey = "sk-123";\nconst password = "hunter2";')])
        assert {i.rule for i in result.issues} == {"hardcoded-api-key", "hardcoded-password"}

    def test_python_sinks(self):
        content = "import pickle, subprocess, yaml\npickle.loads(b)\nsubprocess.run(c, shell=True)\nyaml.load(s)"
        rules = {i.rule for i in SecurityGate().run([src("a.py", content)]).issues}
        assert rules == {"no-pickle", "no-shell-true", "yaml-unsafe-load"}

    def test_safe_yaml(self):
        assert SecurityGate().run([src("a.py", "yaml.load(s, Loader=yaml.SafeLoader)")]).passed

    def test_lockfiles_skipped(self):
        assert SecurityGate().run([src("package-lock.json", '"password": "x"')]).issues == []

    def test_threshold(self):
        assert SecurityGate(max_issues=1).run([src("a.js", "el.innerHTML = html;")]).passed


class TestAccessibilityGate:

    def test_findings(self):
        content = (
            'export const Page = () => (\n'
            '  <div onClick={() => go()}>\n'
            '    <img src="a.png" />\n'
            '    <a>home</a>\n'
            '    <span tabIndex={-1}>x</span>\n'
            '    <Button onClick={() => go()}>ok</Button>\n'
            '  </div>\n'
            ');'
        )
        issues = AccessibilityGate().run([src("Page.tsx", content)]).issues
        found = {(i.rule, i.line) for i in issues}
        assert found == {
            ("click-has-role", 2),
            ("alt-text", 3),
            ("anchor-has-href", 4),
            ("no-negative-tabindex", 5),
        }

    def test_accessible_markup(self):
        content = '<button onClick={save}>Save</button>\n<img src="a.png" alt="Logo" />\n<a href="/">Home</a>'
        assert AccessibilityGate().run([src("a.jsx", content)]).passed


class TestCommandGate:

    def test_passes_on_zero_exit(self):
        sandbox = MemorySandbox()
        sandbox.set_command_result("npm test --silent", output="Tests: 3 passed, 3 total\n")
        result = CommandGate.tests(sandbox).run([])
        assert result.passed
        assert sandbox.spawned == ["npm test --silent"]

    def test_failed_tests(self):
        sandbox = MemorySandbox()
        sandbox.set_command_result("npm test --silent", output="Tests: 2 failed, 1 passed, 3 total\n", exit_code=1)
        result = CommandGate.tests(sandbox).run([])
        assert not result.passed
        assert result.issues[0].message == "2 of 3 test(s) failed"

    def test_unparsed_failure_reports_tail(self):
        sandbox = MemorySandbox()
        sandbox.set_command_result("make check", output="boom\n", exit_code=2)
        result = CommandGate("lint", "make check", sandbox).run([])
        assert not result.passed
        assert "exited with 2" in result.issues[0].message
        assert "boom" in result.issues[0].message

    def test_tsc_output(self):
        issues = parse_tsc_output("src/a.ts(3,7): error TS2322: Type 'string' is not assignable to type 'number'.")
        assert len(issues) == 1
        assert (issues[0].file, issues[0].line, issues[0].column, issues[0].rule) == ("src/a.ts", 3, 7, "TS2322")

    def test_linter_output(self):
        sandbox = MemorySandbox()
        sandbox.set_command_result("ruff check --output-format concise .", exit_code=1,
                                   output="app.py:3:8: F401 `os` imported but unused\nFound 1 error.\n")
        result = CommandGate.linter(sandbox).run([])
        assert result.gate == "lint"
        assert not result.passed
        issue = result.issues[0]
        assert (issue.file, issue.line, issue.column, issue.rule) == ("app.py", 3, 8, "F401")

    def test_replaces_default_gate(self):
        sandbox = MemorySandbox()
        sandbox.set_command_result("npx tsc --noEmit", exit_code=1,
                                   output="src/a.ts(1,1): error TS1005: ';' expected.\n")
        runner = QualityGateRunner(gates={"typecheck": CommandGate.typescript(sandbox)})
        result = runner.run_all([src("src/a.ts", "const a = 1;")])
        assert result.blocked_by == ["typecheck"]
