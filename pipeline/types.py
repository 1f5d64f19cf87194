"""
Pipeline data types: classification, routing, parsed actions, stream events,
queued actions and their history.
"""

import time
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, FrozenSet, List, Optional, Tuple


# Request modes, cheapest to most demanding
MODES = ("question", "simple", "moderate", "complex", "mega-complex")
DEFAULT_MODE = "moderate"

# Model tiers, cheapest to most capable
TIERS = ("lite", "standard", "pro")

PHASES = ("classify", "investigate", "plan", "execute", "verify")

DOMAINS = (
    "frontend", "backend", "database", "auth",
    "api", "styling", "testing", "infrastructure",
)

ACTION_KINDS = ("file", "shell")
ACTION_STATUSES = ("pending", "executing", "success", "error", "skipped")

EVENT_TYPES = ("text", "action", "done", "error")


def mode_severity(mode: str) -> int:
    """Position of mode in MODES; unknown modes rank as the default."""
    if mode in MODES:
        return MODES.index(mode)
    return MODES.index(DEFAULT_MODE)


@dataclass(frozen=True)
class ClassificationResult:
    """How demanding a request is, and what it touches"""
    mode: str
    estimated_files: int = 0
    domains: FrozenSet[str] = frozenset()
    confidence: float = 0.5
    reasoning: str = ""
    complexity_score: Optional[float] = None
    needs_research: bool = False
    needs_planning: bool = False
    detected_keywords: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "estimatedFiles": self.estimated_files,
            "domains": [d for d in DOMAINS if d in self.domains],
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "complexityScore": self.complexity_score,
            "needsResearch": self.needs_research,
            "needsPlanning": self.needs_planning,
            "detectedKeywords": list(self.detected_keywords),
        }


@dataclass
class ClassifyResponse:
    """Classifier outcome as reported over the wire"""
    result: Optional[ClassificationResult] = None
    used_llm: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict() if self.result else None,
            "usedLLM": self.used_llm,
        }


@dataclass(frozen=True)
class ModelSelection:
    """Router decision for one phase"""
    tier: str
    reason: str
    phase: str = "execute"
    model_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Action:
    """One operation parsed from an artifact"""
    kind: str  # file | shell
    content: str = ""
    file_path: Optional[str] = None
    status: str = "pending"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind, "content": self.content}
        if self.file_path is not None:
            data["filePath"] = self.file_path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        kind = data.get("type") or data.get("kind")
        if kind not in ACTION_KINDS:
            raise ValueError(f"Unknown action type: {kind!r}")
        return cls(
            kind=kind,
            content=str(data.get("content", "")),
            file_path=data.get("filePath") or data.get("file_path"),
        )


@dataclass
class Artifact:
    """A closed <artifact> block and the actions it carried"""
    id: str = ""
    title: str = ""
    actions: List[Action] = field(default_factory=list)


@dataclass
class StreamEvent:
    """One event of the generation stream: text, action, done or error"""
    type: str
    content: str = ""
    action: Optional[Action] = None
    message: str = ""

    @property
    def terminal(self) -> bool:
        return self.type in ("done", "error")

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "text":
            return {"type": "text", "content": self.content}
        if self.type == "action":
            return {"type": "action", "action": self.action.to_dict() if self.action else None}
        if self.type == "error":
            return {"type": "error", "message": self.message}
        return {"type": self.type}


@dataclass(frozen=True)
class PriorState:
    """File state captured before an action first touched it"""
    path: str
    existed: bool
    content: Optional[str] = None
    captured_at: float = field(default_factory=time.time)

    @classmethod
    def missing(cls, path: str) -> "PriorState":
        return cls(path=path, existed=False)

    @classmethod
    def with_content(cls, path: str, content: str) -> "PriorState":
        return cls(path=path, existed=True, content=content)


@dataclass
class QueuedAction:
    """An action owned by the queue, with its backup and lifecycle state"""
    id: str
    kind: str
    content: str = ""
    file_path: Optional[str] = None
    status: str = "pending"
    backup: Optional[PriorState] = None
    error: Optional[str] = None
    attempts: int = 0
    rolled_back: bool = False
    queued_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    # Monotonic order of successful completions, used by rollback_all
    completion_seq: int = 0

    @property
    def can_rollback(self) -> bool:
        return self.backup is not None and self.status == "success" and not self.rolled_back

    @property
    def description(self) -> str:
        if self.kind == "file":
            return f"write {self.file_path}"
        first_line = self.content.strip().splitlines()[0] if self.content.strip() else ""
        return f"run {first_line[:80]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "filePath": self.file_path,
            "status": self.status,
            "error": self.error,
            "attempts": self.attempts,
            "rolledBack": self.rolled_back,
            "canRollback": self.can_rollback,
            "hadFile": self.backup.existed if self.backup else None,
            "queuedAt": self.queued_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


@dataclass(frozen=True)
class ExecutionHistoryEntry:
    """Append-only record of an action outcome"""
    action_id: str
    kind: str
    outcome: str  # success | error | rolled_back
    file_path: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actionId": self.action_id,
            "type": self.kind,
            "outcome": self.outcome,
            "filePath": self.file_path,
            "error": self.error,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
        }


@dataclass
class PipelineEvent:
    """Event emitted while a build runs"""
    type: str  # phase_start, classification, selection, text, action, queue, quality, error, done
    content: str = ""
    data: Optional[Dict[str, Any]] = None
