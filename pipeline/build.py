"""
End-to-end build: classify a request, route it to a model tier, stream the
generation, apply the parsed actions through the queue and gate the result.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import pipeline_config
from sandbox import Sandbox, SandboxNotFound
from .action_queue import ActionQueue, QueueEvent
from .classifier import classify_request, classify_keywords, default_classification
from .generation import stream_generation
from .prompts import build_generation_prompt, build_fix_prompt
from .quality import QualityGateResult, QualityGateRunner, SourceFile
from .router import TokenLedger, select_model, format_selection_log
from .types import Action, ClassificationResult, ModelSelection, PipelineEvent, QueuedAction

logger = logging.getLogger(__name__)

PipelineListener = Callable[[PipelineEvent], None]


@dataclass
class BuildReport:
    """Everything one build produced"""
    prompt: str
    classification: Optional[ClassificationResult] = None
    used_llm: bool = False
    selections: List[ModelSelection] = field(default_factory=list)
    text: str = ""
    actions: List[Action] = field(default_factory=list)
    queued: List[QueuedAction] = field(default_factory=list)
    quality: Optional[QualityGateResult] = None
    error: Optional[str] = None
    aborted: bool = False
    attempts: int = 0
    cost: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def failed_actions(self) -> List[QueuedAction]:
        return [qa for qa in self.queued if qa.status == "error"]

    @property
    def touched_files(self) -> List[str]:
        seen = []
        for qa in self.queued:
            if qa.kind == "file" and qa.status == "success" and qa.file_path not in seen:
                seen.append(qa.file_path)
        return seen

    @property
    def passed(self) -> bool:
        if self.quality is not None:
            return self.quality.passed
        return self.error is None and not self.aborted and not self.failed_actions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "passed": self.passed,
            "classification": self.classification.to_dict() if self.classification else None,
            "usedLLM": self.used_llm,
            "selections": [s.to_dict() for s in self.selections],
            "text": self.text,
            "actions": [qa.to_dict() for qa in self.queued],
            "touchedFiles": self.touched_files,
            "quality": self.quality.to_dict() if self.quality else None,
            "error": self.error,
            "aborted": self.aborted,
            "attempts": self.attempts,
            "cost": self.cost,
            "durationMs": round(self.duration_ms, 2),
        }


class BuildPipeline:
    """Runs one request through classify, route, generate, apply and verify.

    The queue is the only writer to the sandbox; gates read a snapshot of the
    touched files once the queue is idle. An abort stops consuming the
    stream but never undoes actions already applied.
    """

    def __init__(self, service, sandbox: Sandbox, queue: Optional[ActionQueue] = None,
                 gate_runner: Optional[QualityGateRunner] = None,
                 ledger: Optional[TokenLedger] = None):
        self.service = service
        self.sandbox = sandbox
        self.queue = queue or ActionQueue(sandbox)
        self.gate_runner = gate_runner or QualityGateRunner()
        self.ledger = ledger or TokenLedger()

    # ------------------------------------------------------------------

    def classify(self, prompt: str) -> Tuple[ClassificationResult, bool]:
        response = classify_request(prompt, self.service, pipeline_config.classify_timeout_ms)
        if response.result is not None:
            return response.result, True
        if pipeline_config.classify_fallback == "keywords":
            return classify_keywords(prompt), False
        return default_classification(), False

    def run(self, prompt: str, context: Optional[Dict[str, str]] = None,
            abort: Optional[threading.Event] = None,
            on_event: Optional[PipelineListener] = None,
            run_gates: bool = True) -> BuildReport:
        """Build prompt. context maps project paths to contents the model may edit."""
        start = time.perf_counter()
        report = BuildReport(prompt=prompt)

        def emit(event_type: str, content: str = "", data: Optional[Dict[str, Any]] = None):
            if on_event is None:
                return
            try:
                on_event(PipelineEvent(type=event_type, content=content, data=data))
            except Exception as e:
                logger.warning(f"Pipeline listener failed on {event_type}: {e}")

        def forward(event: QueueEvent):
            if event.type in ("action_start", "action_complete", "action_error", "output"):
                emit("queue", event.content, {
                    "event": event.type,
                    "action": event.action.to_dict() if event.action else None,
                })

        unsubscribe = self.queue.subscribe(forward)
        try:
            emit("phase_start", "classify")
            classification, used_llm = self.classify(prompt)
            report.classification = classification
            report.used_llm = used_llm
            emit("classification", classification.reasoning, classification.to_dict())

            mode = classification.mode
            score = classification.complexity_score
            generation_prompt = build_generation_prompt(prompt, context)

            fix_attempts = max(0, pipeline_config.quality_fix_attempts)
            for attempt in range(fix_attempts + 1):
                selection = select_model("execute", mode, score, is_retry=attempt > 0)
                report.selections.append(selection)
                report.attempts += 1
                logger.info(format_selection_log(selection, mode, score))
                emit("selection", selection.reason, selection.to_dict())

                emit("phase_start", "execute")
                self._generate_and_apply(generation_prompt, selection, mode, abort, emit, report)
                if report.aborted:
                    break

                if not run_gates or not report.touched_files:
                    break
                emit("phase_start", "verify")
                snapshot = self.snapshot(report.touched_files)
                report.quality = self.gate_runner.run_all(snapshot)
                emit("quality", "passed" if report.quality.passed else "failed", report.quality.to_dict())
                if report.quality.passed or attempt == fix_attempts:
                    break

                issues = [str(i) for i in report.quality.blocking_issues()]
                logger.info(f"Blocking gates failed ({', '.join(report.quality.blocked_by)}), "
                            f"fix attempt {attempt + 1}/{fix_attempts}")
                generation_prompt = build_generation_prompt(
                    build_fix_prompt(prompt, issues),
                    {f.path: f.content for f in snapshot},
                )
        finally:
            unsubscribe()

        report.cost = self.ledger.session_cost()
        report.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Build finished in {report.duration_ms:.0f}ms: "
                    f"{len(report.queued)} action(s), passed={report.passed}")
        emit("done", "passed" if report.passed else "failed", report.to_dict())
        return report

    def _generate_and_apply(self, prompt: str, selection: ModelSelection, mode: str,
                            abort: Optional[threading.Event], emit, report: BuildReport) -> None:
        actions: List[Action] = []
        text: List[str] = []
        stream_error = None

        for event in stream_generation(
            self.service, prompt, selection, mode=mode,
            incremental=pipeline_config.stream_incremental,
            abort=abort, ledger=self.ledger,
        ):
            if event.type == "text":
                text.append(event.content)
                emit("text", event.content)
            elif event.type == "action":
                actions.append(event.action)
                emit("action", event.action.file_path or event.action.content[:80], event.action.to_dict())
            elif event.type == "error":
                stream_error = event.message
                emit("error", event.message)
                break
            elif event.type == "done":
                break

        report.text += "".join(text)
        report.actions.extend(actions)

        if abort is not None and abort.is_set():
            report.aborted = True
            logger.info(f"Build aborted with {len(actions)} parsed action(s) not applied")
            return
        if stream_error is not None:
            report.error = stream_error
            if not pipeline_config.enqueue_on_stream_error:
                logger.warning(f"Stream failed, discarding {len(actions)} parsed action(s)")
                return
        if not actions:
            return

        queued = self.queue.enqueue(actions)
        report.queued.extend(queued)
        if self.queue.auto_start:
            self.queue.wait_until_idle()
        else:
            self.queue.process()

    def snapshot(self, paths: List[str]) -> List[SourceFile]:
        """Current content of paths; files removed since are left out."""
        files = []
        for path in paths:
            try:
                files.append(SourceFile(path=path, content=self.sandbox.read_file(path)))
            except SandboxNotFound:
                logger.debug(f"Snapshot skipped missing file {path}")
        return files
