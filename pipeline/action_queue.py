"""
Sequential action execution against the project sandbox.

Actions run one at a time in the order they were enqueued. Before a file
action first touches the sandbox, the file's prior state is captured; that
backup is what rollback restores and what a retry keeps. Every sandbox
mutation, execution or rollback, happens under a single mutation lock.
"""

import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from config import pipeline_config
from sandbox import Sandbox, SandboxNotFound
from .types import Action, ExecutionHistoryEntry, PriorState, QueuedAction

logger = logging.getLogger(__name__)

QUEUE_EVENT_TYPES = (
    "action_start", "action_complete", "action_error", "output",
    "progress", "filesystem_change", "rollback", "idle",
)


class ActionError(Exception):
    """An action could not be applied"""
    pass


@dataclass
class QueueEvent:
    """Event emitted to queue subscribers"""
    type: str
    action: Optional[QueuedAction] = None
    content: str = ""
    data: Optional[Dict[str, Any]] = None


QueueListener = Callable[[QueueEvent], None]

_id_counter = itertools.count(1)


def _new_action_id() -> str:
    return f"act-{int(time.time() * 1000)}-{next(_id_counter)}"


class ActionQueue:
    """FIFO of sandbox actions with backups, history, rollback and retry.

    With auto_start (default) a worker thread drains the queue whenever
    actions are enqueued; otherwise the caller drains it with process().
    """

    def __init__(
        self,
        sandbox: Sandbox,
        stop_on_error: Optional[bool] = None,
        max_history: Optional[int] = None,
        auto_start: bool = True,
        max_actions: Optional[int] = None,
    ):
        self.sandbox = sandbox
        self.stop_on_error = pipeline_config.queue_stop_on_error if stop_on_error is None else stop_on_error
        self.max_history = pipeline_config.queue_max_history if max_history is None else max_history
        self.auto_start = auto_start
        self.max_actions = pipeline_config.queue_max_actions if max_actions is None else max_actions

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        # Serializes every sandbox mutation (execution and rollback)
        self._mutation_lock = threading.RLock()

        self._pending: Deque[QueuedAction] = deque()
        self._actions: Dict[str, QueuedAction] = {}
        self._completed: List[QueuedAction] = []
        self._failed: List[QueuedAction] = []
        self._abandoned: List[QueuedAction] = []
        self._history: List[ExecutionHistoryEntry] = []
        self._executing: Optional[QueuedAction] = None
        self._running = False
        self._batch_total = 0
        self._batch_done = 0

        self._completion_seq = itertools.count(1)
        self._history_seq = itertools.count(1)
        self._listeners: List[QueueListener] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Register listener for queue events. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return _unsubscribe

    def _emit(self, event_type: str, action: Optional[QueuedAction] = None,
              content: str = "", data: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        event = QueueEvent(type=event_type, action=action, content=content, data=data)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Queue listener failed on {event_type}: {e}")

    # ------------------------------------------------------------------
    # Enqueue / drain
    # ------------------------------------------------------------------

    def enqueue(self, actions: Iterable[Union[Action, Dict[str, Any]]]) -> List[QueuedAction]:
        """Append actions in order. Safe from any thread."""
        queued = []
        for action in actions:
            if isinstance(action, dict):
                action = Action.from_dict(action)
            queued.append(QueuedAction(
                id=_new_action_id(),
                kind=action.kind,
                content=action.content,
                file_path=action.file_path,
            ))
        if not queued:
            return []
        with self._lock:
            for qa in queued:
                self._pending.append(qa)
                self._actions[qa.id] = qa
            self._batch_total += len(queued)
            start = self.auto_start and not self._running
            if start:
                self._running = True
        logger.info(f"Enqueued {len(queued)} action(s)")
        if start:
            self._start_worker()
        return queued

    def _start_worker(self) -> None:
        worker = threading.Thread(target=self._drain, name="action-queue", daemon=True)
        worker.start()

    def process(self) -> int:
        """Drain the queue in the calling thread. Returns the number of actions run."""
        with self._lock:
            if self._running:
                return 0
            self._running = True
        return self._drain()

    def _drain(self) -> int:
        executed = 0
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._finish_pass()
                        break
                    qa = self._pending.popleft()
                    qa.status = "executing"
                    qa.started_at = time.time()
                    qa.attempts += 1
                    qa.error = None
                    self._executing = qa
                self._emit("action_start", qa, content=qa.description)

                ok = self._run_one(qa)
                executed += 1

                halted = 0
                with self._lock:
                    self._executing = None
                    self._batch_done += 1
                    progress = {"completed": self._batch_done, "total": self._batch_total}
                    if not ok and self.stop_on_error and self._pending:
                        halted = len(self._pending)
                        self._abandoned.extend(self._pending)
                        self._pending.clear()
                self._emit("progress", qa, data=progress)
                if halted:
                    logger.warning(f"Stopping after failed action {qa.id}; {halted} action(s) left pending")
        except Exception:
            with self._lock:
                self._finish_pass()
            raise
        self._emit("idle")
        return executed

    def _finish_pass(self) -> None:
        # caller holds self._lock
        self._running = False
        self._executing = None
        self._batch_total = 0
        self._batch_done = 0
        self._idle.notify_all()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no drain pass is running. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._running, timeout)

    def is_executing(self) -> bool:
        with self._lock:
            return self._running

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run_one(self, qa: QueuedAction) -> bool:
        with self._mutation_lock:
            try:
                if qa.kind == "file":
                    self._apply_file(qa)
                elif qa.kind == "shell":
                    self._run_shell(qa)
                else:
                    raise ActionError(f"Unknown action type: {qa.kind}")
            except Exception as e:
                error = str(e) or e.__class__.__name__
                with self._lock:
                    qa.status = "error"
                    qa.error = error
                    qa.completed_at = time.time()
                    if qa not in self._failed:
                        self._failed.append(qa)
                    self._record(qa, "error", error)
                    self._evict_finished()
                logger.error(f"Action {qa.id} ({qa.description}) failed: {error}")
                self._emit("action_error", qa, content=error)
                return False

            with self._lock:
                qa.status = "success"
                qa.completed_at = time.time()
                qa.completion_seq = next(self._completion_seq)
                if qa in self._failed:
                    self._failed.remove(qa)
                self._completed.append(qa)
                self._record(qa, "success")
                self._evict_finished()
        self._emit("action_complete", qa, content=qa.description)
        if qa.kind == "file":
            self._emit("filesystem_change", qa, data={"path": qa.file_path, "change": "write"})
        return True

    def _apply_file(self, qa: QueuedAction) -> None:
        if not qa.file_path:
            raise ActionError("Invalid file action: missing filePath")
        if qa.backup is None:
            try:
                qa.backup = PriorState.with_content(qa.file_path, self.sandbox.read_file(qa.file_path))
            except SandboxNotFound:
                qa.backup = PriorState.missing(qa.file_path)
        self.sandbox.write_file(qa.file_path, qa.content)
        verb = "Updated" if qa.backup.existed else "Created"
        self._emit("output", qa, content=f"{verb} {qa.file_path}\n")

    def _run_shell(self, qa: QueuedAction) -> None:
        command = qa.content.strip()
        if not command:
            raise ActionError("Invalid shell action: empty command")
        proc = self.sandbox.spawn(command)
        for chunk in proc.output:
            self._emit("output", qa, content=chunk)
        exit_code = proc.wait()
        if exit_code != 0:
            raise ActionError(f"Exit code: {exit_code}")

    def _record(self, qa: QueuedAction, outcome: str, error: Optional[str] = None) -> None:
        # caller holds self._lock
        self._history.append(ExecutionHistoryEntry(
            action_id=qa.id,
            kind=qa.kind,
            outcome=outcome,
            file_path=qa.file_path,
            error=error,
            sequence=next(self._history_seq),
        ))
        if self.max_history and len(self._history) > self.max_history:
            del self._history[:len(self._history) - self.max_history]

    def _evict_finished(self) -> None:
        # caller holds self._lock
        if not self.max_actions:
            return
        finished = sorted(
            (qa for qa in self._actions.values() if qa.status in ("success", "error", "skipped")),
            key=lambda qa: qa.completed_at or 0.0,
        )
        excess = len(finished) - self.max_actions
        if excess <= 0:
            return
        dropped = {qa.id for qa in finished[:excess]}
        for action_id in dropped:
            del self._actions[action_id]
        self._completed = [qa for qa in self._completed if qa.id not in dropped]
        self._failed = [qa for qa in self._failed if qa.id not in dropped]
        logger.debug(f"Forgot {excess} finished action(s), keeping {self.max_actions}")

    # ------------------------------------------------------------------
    # Rollback / retry
    # ------------------------------------------------------------------

    def rollback(self, action_id: str) -> bool:
        """Restore the file an action changed to its prior state.

        Returns False for unknown ids, actions that are not rollbackable or
        already rolled back, and sandbox failures. Never raises.
        """
        with self._mutation_lock:
            with self._lock:
                qa = self._actions.get(action_id)
                if qa is None or not qa.can_rollback:
                    logger.info(f"Nothing to roll back for {action_id}")
                    return False
                backup = qa.backup
            try:
                if backup.existed:
                    self.sandbox.write_file(backup.path, backup.content)
                else:
                    try:
                        self.sandbox.remove_file(backup.path)
                    except SandboxNotFound:
                        pass
            except Exception as e:
                logger.error(f"Failed to roll back {action_id} ({backup.path}): {e}")
                return False
            with self._lock:
                qa.rolled_back = True
                self._record(qa, "rolled_back")
        change = "restore" if backup.existed else "delete"
        logger.info(f"Rolled back {action_id}: {change} {backup.path}")
        self._emit("rollback", qa, content=f"{change} {backup.path}")
        self._emit("filesystem_change", qa, data={"path": backup.path, "change": change})
        return True

    def rollback_all(self) -> int:
        """Roll back every rollbackable action, most recently completed first."""
        with self._lock:
            candidates = sorted(
                (qa for qa in self._actions.values() if qa.can_rollback),
                key=lambda qa: qa.completion_seq,
                reverse=True,
            )
        count = 0
        for qa in candidates:
            if self.rollback(qa.id):
                count += 1
        logger.info(f"Rolled back {count} of {len(candidates)} action(s)")
        return count

    def retry_action(self, action_id: str) -> bool:
        """Re-enqueue a failed action with its original content and backup."""
        with self._lock:
            qa = self._actions.get(action_id)
            if qa is None or qa.status != "error":
                return False
            qa.status = "pending"
            qa.error = None
            if qa in self._failed:
                self._failed.remove(qa)
            self._pending.append(qa)
            self._batch_total += 1
            start = self.auto_start and not self._running
            if start:
                self._running = True
        logger.info(f"Retrying action {action_id} (attempt {qa.attempts + 1})")
        if start:
            self._start_worker()
        return True

    def requeue_abandoned(self) -> int:
        """Put actions left behind by stop_on_error back on the queue."""
        with self._lock:
            abandoned = list(self._abandoned)
            self._abandoned.clear()
            self._pending.extend(abandoned)
            self._batch_total += len(abandoned)
            start = bool(abandoned) and self.auto_start and not self._running
            if start:
                self._running = True
        if start:
            self._start_worker()
        return len(abandoned)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cancel_pending(self) -> int:
        """Mark every not-yet-started action skipped. The running action finishes."""
        with self._lock:
            cancelled = list(self._pending) + list(self._abandoned)
            self._pending.clear()
            self._abandoned.clear()
            for qa in cancelled:
                qa.status = "skipped"
            self._evict_finished()
        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} pending action(s)")
        return len(cancelled)

    def clear_completed(self) -> None:
        """Forget the completed and failed lists. Backups stay available for rollback."""
        with self._lock:
            self._completed = []
            self._failed = []

    def clear_history(self) -> None:
        """Forget history and every finished action; they can no longer be rolled back."""
        with self._lock:
            self._history = []
            live = {qa.id for qa in self._pending}
            live.update(qa.id for qa in self._abandoned)
            if self._executing is not None:
                live.add(self._executing.id)
            self._actions = {k: v for k, v in self._actions.items() if k in live}

    def get_action(self, action_id: str) -> Optional[QueuedAction]:
        with self._lock:
            return self._actions.get(action_id)

    def get_history(self) -> List[ExecutionHistoryEntry]:
        """History entries, oldest first (completion order)."""
        with self._lock:
            return list(self._history)

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "isExecuting": self._running,
                "current": self._executing.to_dict() if self._executing else None,
                "pending": [qa.to_dict() for qa in self._pending],
                "completed": [qa.to_dict() for qa in self._completed],
                "failed": [qa.to_dict() for qa in self._failed],
                "abandoned": [qa.to_dict() for qa in self._abandoned],
                "history": [h.to_dict() for h in self._history],
            }
