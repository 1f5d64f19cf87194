"""Tests for sequential action execution, rollback and retry."""

import random
import threading

import pytest

from pipeline.action_queue import ActionQueue
from pipeline.types import Action
from sandbox import MemorySandbox


def file_act(path, content):
    return Action(kind="file", file_path=path, content=content)


def shell_act(command):
    return Action(kind="shell", content=command)


@pytest.fixture
def queue(sandbox):
    return ActionQueue(sandbox, stop_on_error=False, max_history=50, auto_start=False)


class TestOrdering:
    """Actions run one at a time in enqueue order."""

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_random_batches(self, seed):
        rng = random.Random(seed)
        sandbox = MemorySandbox()
        queue = ActionQueue(sandbox, auto_start=False)
        paths = [f"src/f{i}.ts" for i in range(rng.randint(2, 6))]
        actions = [file_act(rng.choice(paths), f"v{i}") for i in range(rng.randint(1, 30))]

        queued = queue.enqueue(actions)
        queue.process()

        assert [h.action_id for h in queue.get_history()] == [qa.id for qa in queued]
        last = {}
        for a in actions:
            last[a.file_path] = a.content
        for path, content in last.items():
            assert sandbox.files[path] == content

    def test_worker_thread(self, sandbox):
        queue = ActionQueue(sandbox)
        seen = []
        queue.subscribe(lambda e: seen.append(e.action.file_path) if e.type == "action_start" else None)
        queue.enqueue([file_act(f"f{i}.txt", str(i)) for i in range(10)])
        assert queue.wait_until_idle(timeout=5)
        assert seen == [f"f{i}.txt" for i in range(10)]
        assert not queue.is_executing()
        assert queue.get_pending_count() == 0

    def test_enqueue_from_many_threads(self, sandbox):
        queue = ActionQueue(sandbox)
        threads = [
            threading.Thread(target=queue.enqueue, args=([file_act(f"t{n}/{i}.txt", "x") for i in range(5)],))
            for n in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert queue.wait_until_idle(timeout=5)
        assert len(sandbox.files) == 20
        assert len(queue.get_history()) == 20

    def test_enqueue_dicts(self, queue, sandbox):
        queue.enqueue([{"type": "file", "filePath": "a.txt", "content": "a"}])
        queue.process()
        assert sandbox.files["a.txt"] == "a"

    def test_enqueue_bad_dict_raises(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue([{"type": "teleport", "content": ""}])


class TestExecution:

    def test_events(self, queue):
        events = []
        queue.subscribe(lambda e: events.append(e.type))
        queue.enqueue([file_act("a.txt", "a")])
        queue.process()
        assert events == ["action_start", "output", "action_complete", "filesystem_change", "progress", "idle"]

    def test_output_says_created_or_updated(self, queue, sandbox):
        sandbox.files["old.txt"] = "old"
        outputs = []
        queue.subscribe(lambda e: outputs.append(e.content) if e.type == "output" else None)
        queue.enqueue([file_act("old.txt", "new"), file_act("new.txt", "new")])
        queue.process()
        assert outputs == ["Updated old.txt\n", "Created new.txt\n"]

    def test_shell_success_streams_output(self, queue, sandbox):
        sandbox.set_command_result("npm install", output="added 3 packages\n")
        outputs = []
        queue.subscribe(lambda e: outputs.append(e.content) if e.type == "output" else None)
        [qa] = queue.enqueue([shell_act("npm install")])
        queue.process()
        assert qa.status == "success"
        assert outputs == ["added 3 packages\n"]
        assert sandbox.spawned == ["npm install"]

    def test_shell_failure(self, queue, sandbox):
        sandbox.set_command_result("npm test", output="1 failing\n", exit_code=1)
        errors = []
        queue.subscribe(lambda e: errors.append(e.content) if e.type == "action_error" else None)
        [qa] = queue.enqueue([shell_act("npm test")])
        queue.process()
        assert qa.status == "error"
        assert qa.error == "Exit code: 1"
        assert errors == ["Exit code: 1"]
        assert queue.get_history()[-1].outcome == "error"

    def test_failure_does_not_stop_queue(self, queue, sandbox):
        sandbox.fail_writes("locked.txt")
        first, second = queue.enqueue([file_act("locked.txt", "x"), file_act("ok.txt", "y")])
        queue.process()
        assert first.status == "error"
        assert second.status == "success"
        state = queue.get_state()
        assert [a["id"] for a in state["failed"]] == [first.id]
        assert [a["id"] for a in state["completed"]] == [second.id]

    def test_stop_on_error_leaves_rest_pending(self, sandbox):
        queue = ActionQueue(sandbox, stop_on_error=True, auto_start=False)
        sandbox.fail_writes("locked.txt")
        failed, left = queue.enqueue([file_act("locked.txt", "x"), file_act("later.txt", "y")])
        queue.process()
        assert failed.status == "error"
        assert left.status == "pending"
        assert "later.txt" not in sandbox.files
        assert queue.requeue_abandoned() == 1
        queue.process()
        assert left.status == "success"

    def test_listener_failure_is_contained(self, queue, sandbox):
        def broken(event):
            raise RuntimeError("listener bug")
        queue.subscribe(broken)
        [qa] = queue.enqueue([file_act("a.txt", "a")])
        queue.process()
        assert qa.status == "success"

    def test_unsubscribe(self, queue):
        events = []
        unsubscribe = queue.subscribe(events.append)
        unsubscribe()
        queue.enqueue([file_act("a.txt", "a")])
        queue.process()
        assert events == []

    def test_cancel_pending(self, queue):
        queued = queue.enqueue([file_act("a.txt", "a"), file_act("b.txt", "b")])
        assert queue.cancel_pending() == 2
        assert [qa.status for qa in queued] == ["skipped", "skipped"]
        assert queue.process() == 0


class TestRollback:

    def test_restores_prior_content(self, queue, sandbox):
        sandbox.files["app.ts"] = "original"
        [qa] = queue.enqueue([file_act("app.ts", "changed")])
        queue.process()
        assert sandbox.files["app.ts"] == "changed"
        assert queue.rollback(qa.id) is True
        assert sandbox.files["app.ts"] == "original"
        assert qa.rolled_back

    def test_new_file_is_deleted(self, queue, sandbox):
        [qa] = queue.enqueue([file_act("new.ts", "x")])
        queue.process()
        assert queue.rollback(qa.id)
        assert "new.ts" not in sandbox.files

    def test_idempotent(self, queue, sandbox):
        sandbox.files["app.ts"] = "original"
        [qa] = queue.enqueue([file_act("app.ts", "changed")])
        queue.process()
        assert queue.rollback(qa.id) is True
        sandbox.files["app.ts"] = "edited by hand"
        assert queue.rollback(qa.id) is False
        assert sandbox.files["app.ts"] == "edited by hand"

    def test_unknown_and_shell_actions(self, queue):
        [qa] = queue.enqueue([shell_act("ls")])
        queue.process()
        assert queue.rollback(qa.id) is False
        assert queue.rollback("act-missing") is False

    def test_failed_action_not_rollbackable(self, queue, sandbox):
        sandbox.fail_writes("locked.txt")
        [qa] = queue.enqueue([file_act("locked.txt", "x")])
        queue.process()
        assert not qa.can_rollback
        assert queue.rollback(qa.id) is False

    def test_rollback_failure_returns_false(self, queue, sandbox):
        sandbox.files["app.ts"] = "original"
        [qa] = queue.enqueue([file_act("app.ts", "changed")])
        queue.process()
        sandbox.fail_writes("app.ts")
        assert queue.rollback(qa.id) is False
        assert qa.can_rollback

    def test_rollback_all_most_recent_first(self, queue, sandbox):
        sandbox.files["a.txt"] = "a0"
        first, second, third = queue.enqueue([
            file_act("a.txt", "a1"),
            file_act("b.txt", "b1"),
            file_act("a.txt", "a2"),
        ])
        queue.process()
        assert queue.rollback(second.id)
        order = []
        queue.subscribe(lambda e: order.append(e.action.id) if e.type == "rollback" else None)
        assert queue.rollback_all() == 2
        assert order == [third.id, first.id]
        assert sandbox.files == {"a.txt": "a0"}

    def test_rollback_all_skips_failed_action(self, queue, sandbox):
        sandbox.fail_writes("locked.txt")
        first, second, third = queue.enqueue([
            file_act("a.txt", "a1"),
            file_act("locked.txt", "x"),
            file_act("c.txt", "c1"),
        ])
        queue.process()
        assert [qa.status for qa in (first, second, third)] == ["success", "error", "success"]
        order = []
        queue.subscribe(lambda e: order.append(e.action.id) if e.type == "rollback" else None)
        assert queue.rollback_all() == 2
        assert order == [third.id, first.id]
        assert sandbox.files == {}

    def test_history_records_rollback(self, queue):
        [qa] = queue.enqueue([file_act("x.txt", "x")])
        queue.process()
        queue.rollback(qa.id)
        assert [h.outcome for h in queue.get_history()] == ["success", "rolled_back"]

    def test_clear_completed_keeps_rollback(self, queue, sandbox):
        [qa] = queue.enqueue([file_act("x.txt", "x")])
        queue.process()
        queue.clear_completed()
        assert queue.rollback(qa.id)

    def test_clear_history_forgets_actions(self, queue):
        [qa] = queue.enqueue([file_act("x.txt", "x")])
        queue.process()
        queue.clear_history()
        assert queue.get_history() == []
        assert queue.rollback(qa.id) is False

    def test_history_trimmed_to_max(self, sandbox):
        queue = ActionQueue(sandbox, max_history=3, auto_start=False)
        queued = queue.enqueue([file_act(f"{i}.txt", "x") for i in range(5)])
        queue.process()
        assert [h.action_id for h in queue.get_history()] == [qa.id for qa in queued[-3:]]
        assert queue.rollback(queued[0].id)


class TestRetention:
    """Finished actions are bounded; pending ones are never dropped."""

    def test_oldest_finished_actions_forgotten(self, sandbox):
        queue = ActionQueue(sandbox, max_actions=3, auto_start=False)
        queued = queue.enqueue([file_act(f"{i}.txt", "x") for i in range(5)])
        queue.process()
        assert [queue.get_action(qa.id) for qa in queued[:2]] == [None, None]
        assert all(queue.get_action(qa.id) is qa for qa in queued[2:])
        assert [a["id"] for a in queue.get_state()["completed"]] == [qa.id for qa in queued[2:]]
        assert queue.rollback(queued[0].id) is False
        assert queue.rollback(queued[-1].id) is True

    def test_pending_actions_kept(self, sandbox):
        queue = ActionQueue(sandbox, max_actions=1, auto_start=False)
        done = queue.enqueue([file_act("a.txt", "a"), file_act("b.txt", "b")])
        queue.process()
        waiting = queue.enqueue([file_act(f"w{i}.txt", "w") for i in range(3)])
        assert all(queue.get_action(qa.id) is qa for qa in waiting)
        assert queue.get_action(done[0].id) is None
        assert queue.get_action(done[1].id) is done[1]
        assert queue.process() == 3
        assert [queue.get_action(qa.id) for qa in waiting] == [None, None, waiting[-1]]

    def test_failed_actions_count_toward_limit(self, sandbox):
        queue = ActionQueue(sandbox, max_actions=2, auto_start=False)
        sandbox.fail_writes("locked.txt")
        failed = queue.enqueue([file_act("locked.txt", "x"), file_act("a.txt", "a"), file_act("b.txt", "b")])[0]
        queue.process()
        assert queue.get_state()["failed"] == []
        assert queue.retry_action(failed.id) is False


class TestRetry:

    def test_retry_keeps_original_backup(self, queue, sandbox):
        sandbox.files["cfg.json"] = "{}"
        sandbox.fail_writes("cfg.json")
        [qa] = queue.enqueue([file_act("cfg.json", '{"a": 1}')])
        queue.process()
        assert qa.status == "error"

        sandbox._failing_paths.clear()
        assert queue.retry_action(qa.id)
        queue.process()
        assert qa.status == "success"
        assert qa.attempts == 2
        assert qa.backup.content == "{}"
        assert queue.rollback(qa.id)
        assert sandbox.files["cfg.json"] == "{}"

    def test_only_failed_actions(self, queue):
        [qa] = queue.enqueue([file_act("x.txt", "x")])
        queue.process()
        assert queue.retry_action(qa.id) is False
        assert queue.retry_action("act-missing") is False

    def test_state_is_camel_case(self, queue):
        [qa] = queue.enqueue([file_act("x.txt", "x")])
        state = queue.get_state()
        assert state["isExecuting"] is False
        assert state["pending"][0]["filePath"] == "x.txt"
        assert state["pending"][0]["id"] == qa.id
