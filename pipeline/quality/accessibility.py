"""
Accessibility gate for markup (JSX/TSX/HTML/Vue/Svelte). Advisory by default.
"""

import re
from typing import Iterator, List, Optional, Tuple

from .gates import Gate, GateIssue, SourceFile, MARKUP_EXTENSIONS, line_of

INTERACTIVE_TAGS = {"a", "button", "input", "select", "textarea", "option", "summary", "label"}

_ALT_RE = re.compile(r"\balt\s*=")
_HREF_RE = re.compile(r"\bhref\s*=")
_CLICK_RE = re.compile(r"\bon[cC]lick\s*=")
_ROLE_RE = re.compile(r"\brole\s*=")
_NEG_TABINDEX_RE = re.compile(r"""\btab[iI]ndex\s*=\s*\{?\s*['"]?-\d""")
_TAG_START_RE = re.compile(r"<([a-zA-Z][\w.:-]*)")


def iter_tags(content: str) -> Iterator[Tuple[str, str, int]]:
    """Yield (tag name, attribute text, offset) for every opening tag.

    The end of a tag is the first '>' outside quotes and JSX braces, so
    arrow functions inside handlers do not cut a tag short.
    """
    for m in _TAG_START_RE.finditer(content):
        start = m.end()
        depth = 0
        quote = None
        i = start
        while i < len(content):
            ch = content[i]
            if quote:
                if ch == quote:
                    quote = None
            elif ch in ('"', "'", "`"):
                quote = ch
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth = max(0, depth - 1)
            elif ch == ">" and depth == 0:
                break
            i += 1
        yield m.group(1), content[start:i], m.start()


class AccessibilityGate(Gate):
    """Fails when findings exceed max_issues (default 0). Skipped when no markup changed."""

    name = "accessibility"
    extensions = MARKUP_EXTENSIONS

    def __init__(self, max_issues: int = 0, ignore_patterns: Optional[List[str]] = None, **options):
        super().__init__(ignore_patterns=ignore_patterns, **options)
        self.max_issues = max_issues

    def should_run(self, files: List[SourceFile]) -> bool:
        return bool(self.select(files))

    def check(self, files: List[SourceFile]) -> List[GateIssue]:
        issues = []
        for source in files:
            for tag, attrs, offset in iter_tags(source.content):
                for rule_id, severity, message in self._tag_findings(tag, attrs):
                    line, column = line_of(source.content, offset)
                    issues.append(GateIssue(
                        file=source.path, line=line, column=column,
                        severity=severity, rule=rule_id, message=message,
                    ))
        return issues

    @staticmethod
    def _tag_findings(tag: str, attrs: str) -> List[Tuple[str, str, str]]:
        found = []
        name = tag.lower()
        if name == "img" and not _ALT_RE.search(attrs):
            found.append(("alt-text", "error", "Image without alt attribute"))
        if name == "a" and not _HREF_RE.search(attrs):
            found.append(("anchor-has-href", "error", "Anchor without href"))
        # Capitalized tags are components; they decide their own semantics
        if (_CLICK_RE.search(attrs) and tag[0].islower()
                and name not in INTERACTIVE_TAGS and not _ROLE_RE.search(attrs)):
            found.append(("click-has-role", "error", f"Click handler on <{tag}> without role"))
        if _NEG_TABINDEX_RE.search(attrs):
            found.append(("no-negative-tabindex", "warning", "Negative tabindex removes element from tab order"))
        return found

    def evaluate(self, issues: List[GateIssue]) -> bool:
        return len(issues) <= self.max_issues
