"""
Artifact tag extraction from model output.

Model output interleaves prose with containers of the form

    <artifact id="..." title="...">
      <action type="file" filePath="src/app.ts">...</action>
      <action type="shell">npm install</action>
    </artifact>

ArtifactParser is a tokenizer driven state machine (outside, inside-container,
inside-action) that accepts the text in arbitrary chunks. Tags split across
chunks are held back until they can be decided. A container yields its
actions only once it is closed; whatever is still open at finalize() is
dropped.
"""

import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .types import Action, Artifact, ACTION_KINDS

logger = logging.getLogger(__name__)

OUTSIDE = "outside"
IN_CONTAINER = "inside-container"
IN_ACTION = "inside-action"

_ATTR_RE = re.compile(r"""([A-Za-z_][\w:-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_FENCE_LINE_RE = re.compile(r"^\s*```[\w-]*\s*$", re.M)


@dataclass
class ParseUpdate:
    """What one feed() or finalize() call produced"""
    text: str = ""
    actions: List[Action] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)


def clean_content(content: str) -> str:
    """De-indent and trim action content; drop a single wrapping markdown fence."""
    cleaned = textwrap.dedent(content.strip("\r\n")).strip()
    lines = cleaned.split("\n")
    if len(lines) >= 2 and lines[0].startswith("```") and lines[-1].strip() == "```":
        cleaned = textwrap.dedent("\n".join(lines[1:-1])).strip()
    return cleaned


def _parse_attrs(raw: str) -> Dict[str, str]:
    attrs = {}
    for m in _ATTR_RE.finditer(raw):
        attrs[m.group(1)] = m.group(2) if m.group(2) is not None else m.group(3)
    return attrs


def _find_tag_end(text: str, start: int) -> int:
    """Index of the '>' closing the tag opened at start, honouring quotes. -1 if not yet seen."""
    quote = None
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == ">":
            return i
    return -1


def _partial_suffix(text: str, needle: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of needle."""
    for k in range(min(len(needle) - 1, len(text)), 0, -1):
        if text.endswith(needle[:k]):
            return k
    return 0


class ArtifactParser:
    """Incremental artifact parser. Not thread-safe; one instance per stream."""

    def __init__(self, container_tag: str = "artifact", action_tag: str = "action"):
        self._open_container = f"<{container_tag}"
        self._close_container = f"</{container_tag}>"
        self._open_action = f"<{action_tag}"
        self._close_action = f"</{action_tag}>"
        self.reset()

    def reset(self) -> None:
        self._buffer = ""
        self._state = OUTSIDE
        self._artifact: Optional[Artifact] = None
        # None while skipping the body of a malformed action
        self._action: Optional[Action] = None
        self._action_parts: List[str] = []
        self._text_parts: List[str] = []
        self._artifacts: List[Artifact] = []
        self._finalized = False

    @property
    def state(self) -> str:
        return self._state

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def artifacts(self) -> List[Artifact]:
        return list(self._artifacts)

    @property
    def actions(self) -> List[Action]:
        return [a for art in self._artifacts for a in art.actions]

    def feed(self, chunk: str) -> ParseUpdate:
        update = ParseUpdate()
        if not chunk:
            return update
        if self._finalized:
            raise RuntimeError("feed() after finalize(); call reset() first")
        self._buffer += chunk
        while self._buffer:
            if self._state == OUTSIDE:
                progressed = self._step_outside(update)
            elif self._state == IN_CONTAINER:
                progressed = self._step_container(update)
            else:
                progressed = self._step_action(update)
            if not progressed:
                break
        return update

    def finalize(self) -> ParseUpdate:
        """Flush trailing prose; discard any container still open."""
        update = ParseUpdate()
        if self._finalized:
            return update
        if self._state == OUTSIDE:
            self._emit_text(self._buffer, update)
        else:
            dropped = len(self._artifact.actions) if self._artifact else 0
            logger.warning(f"Discarding unterminated artifact ({dropped} closed action(s), state={self._state})")
        self._buffer = ""
        self._state = OUTSIDE
        self._artifact = None
        self._action = None
        self._action_parts = []
        self._finalized = True
        return update

    # ----- states -----

    def _emit_text(self, text: str, update: ParseUpdate) -> None:
        if text:
            self._text_parts.append(text)
            update.text += text

    def _step_outside(self, update: ParseUpdate) -> bool:
        buf = self._buffer
        needle = self._open_container
        pos = 0
        while True:
            i = buf.find(needle, pos)
            if i < 0:
                keep = _partial_suffix(buf, needle)
                self._emit_text(buf[:len(buf) - keep], update)
                self._buffer = buf[len(buf) - keep:]
                return False
            after = i + len(needle)
            if after == len(buf):
                self._emit_text(buf[:i], update)
                self._buffer = buf[i:]
                return False
            if buf[after].isspace() or buf[after] in ">/":
                break
            pos = i + 1  # e.g. "<artifacts", plain text

        end = _find_tag_end(buf, after)
        if end < 0:
            self._emit_text(buf[:i], update)
            self._buffer = buf[i:]
            return False

        self._emit_text(buf[:i], update)
        attrs = _parse_attrs(buf[after:end])
        self._buffer = buf[end + 1:]
        if buf[end - 1] == "/":
            return True  # self-closing container carries nothing
        self._artifact = Artifact(id=attrs.get("id", ""), title=attrs.get("title", ""))
        self._state = IN_CONTAINER
        return True

    def _step_container(self, update: ParseUpdate) -> bool:
        buf = self._buffer
        pos = 0
        while True:
            i = buf.find("<", pos)
            if i < 0:
                self._buffer = ""  # stray content between actions is ignored
                return False
            rest = buf[i:]
            if rest.startswith(self._close_container):
                self._close_artifact(update)
                self._buffer = buf[i + len(self._close_container):]
                return True
            if rest.startswith(self._open_action):
                after = i + len(self._open_action)
                if after == len(buf):
                    self._buffer = rest
                    return False
                if buf[after].isspace() or buf[after] in ">/":
                    end = _find_tag_end(buf, after)
                    if end < 0:
                        self._buffer = rest
                        return False
                    self._open_action_tag(buf[after:end])
                    self._buffer = buf[end + 1:]
                    return True
            elif (self._close_container.startswith(rest) or self._open_action.startswith(rest)):
                self._buffer = rest  # tag split across chunks
                return False
            pos = i + 1  # stray or nested tag, ignored

    def _step_action(self, update: ParseUpdate) -> bool:
        buf = self._buffer
        i = buf.find(self._close_action)
        j = buf.find(self._close_container)
        if j >= 0 and (i < 0 or j < i):
            # container closed around an unterminated action: drop the action only
            logger.warning("Skipping action left open at end of artifact")
            self._action = None
            self._action_parts = []
            self._buffer = buf[j + len(self._close_container):]
            self._close_artifact(update)
            return True
        if i < 0:
            keep = max(_partial_suffix(buf, self._close_action), _partial_suffix(buf, self._close_container))
            self._action_parts.append(buf[:len(buf) - keep])
            self._buffer = buf[len(buf) - keep:]
            return False
        self._action_parts.append(buf[:i])
        self._buffer = buf[i + len(self._close_action):]
        self._close_action_tag()
        return True

    # ----- tag handlers -----

    def _open_action_tag(self, raw_attrs: str) -> None:
        attrs = _parse_attrs(raw_attrs)
        if raw_attrs.rstrip().endswith("/"):
            logger.debug(f"Ignoring self-closing action tag: {raw_attrs.strip()}")
            return
        kind = attrs.get("type")
        file_path = attrs.get("filePath") or None
        self._action_parts = []
        self._state = IN_ACTION
        if kind not in ACTION_KINDS:
            logger.warning(f"Skipping action with unknown type {kind!r}")
            self._action = None
        elif kind == "file" and not file_path:
            logger.warning("Skipping file action without filePath")
            self._action = None
        else:
            self._action = Action(kind=kind, file_path=file_path if kind == "file" else None)

    def _close_action_tag(self) -> None:
        if self._action is not None and self._artifact is not None:
            self._action.content = clean_content("".join(self._action_parts))
            self._artifact.actions.append(self._action)
        self._action = None
        self._action_parts = []
        self._state = IN_CONTAINER

    def _close_artifact(self, update: ParseUpdate) -> None:
        artifact = self._artifact
        self._artifact = None
        self._state = OUTSIDE
        if artifact is None:
            return
        self._artifacts.append(artifact)
        update.artifacts.append(artifact)
        update.actions.extend(artifact.actions)
        logger.debug(f"Artifact {artifact.id or '(no id)'} closed with {len(artifact.actions)} action(s)")


# ============================================================
# One-shot helpers
# ============================================================

def _parse_all(text: str) -> ArtifactParser:
    parser = ArtifactParser()
    parser.feed(text or "")
    parser.finalize()
    return parser


def parse_artifacts(text: str) -> List[Artifact]:
    """All closed artifacts in text, in document order."""
    return _parse_all(text).artifacts


def parse_actions(text: str) -> List[Action]:
    """Actions of all closed artifacts in text, in document order."""
    return _parse_all(text).actions


def split_text_and_actions(text: str) -> Tuple[str, List[Action]]:
    parser = _parse_all(text)
    return parser.text, parser.actions


def extract_text(text: str) -> str:
    """Prose outside artifacts, with fence markers dropped and whitespace collapsed."""
    prose = _FENCE_LINE_RE.sub("", _parse_all(text).text)
    return re.sub(r"\s+", " ", prose).strip()


def has_artifacts(text: str) -> bool:
    return bool(parse_artifacts(text))


def validate_artifact(artifact: Artifact) -> List[str]:
    """Problems that make an artifact unsafe to apply. Empty list means valid."""
    errors = []
    if not artifact.id:
        errors.append("Artifact missing id")
    if not artifact.title:
        errors.append("Artifact missing title")
    seen_paths = set()
    for i, action in enumerate(artifact.actions, start=1):
        if action.kind == "file" and not action.file_path:
            errors.append(f"Action {i}: File action missing filePath")
        if action.kind == "file" and action.file_path:
            if action.file_path.startswith("/") or ".." in action.file_path.split("/"):
                errors.append(f"Action {i}: filePath must stay inside the project: {action.file_path}")
            if action.file_path in seen_paths:
                errors.append(f"Action {i}: {action.file_path} written more than once")
            seen_paths.add(action.file_path)
        if not action.content.strip():
            errors.append(f"Action {i}: Action has empty content")
    return errors
