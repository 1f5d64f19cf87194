"""Shared fixtures: fake Bedrock services and in-memory sandboxes."""

import json
import time
from typing import Dict, Iterator, List, Optional

import pytest

from bedrock_service import GenerationResult
from sandbox import MemorySandbox


def classification_json(is_question=False, files=2, domains=("frontend",), score=3,
                         research=False, planning=False, reasoning="small change") -> str:
    return json.dumps({
        "isQuestion": is_question,
        "estimatedFiles": files,
        "domains": list(domains),
        "complexityScore": score,
        "needsResearch": research,
        "needsPlanning": planning,
        "reasoning": reasoning,
    })


class FakeService:
    """Stands in for BedrockService.

    generate_response answers classification calls with `classification`
    (after `delay` seconds, or raising `error`); generate_response_stream
    replays `chunks` as text deltas, one `replies` entry per call when given.
    """

    def __init__(self, classification: str = "", chunks: Optional[List[str]] = None,
                 replies: Optional[List[List[str]]] = None, delay: float = 0.0,
                 error: Optional[Exception] = None, stream_error: Optional[Exception] = None,
                 usage: Optional[Dict[str, int]] = None):
        self.classification = classification
        self.replies = list(replies) if replies is not None else [list(chunks or [])]
        self.delay = delay
        self.error = error
        self.stream_error = stream_error
        self.usage = usage or {"input_tokens": 100, "output_tokens": 50}
        self.calls: List[Dict] = []
        self.stream_calls: List[Dict] = []

    def generate_response(self, messages, system_prompt=None, model_id=None, config=None):
        self.calls.append({"messages": messages, "system_prompt": system_prompt, "model_id": model_id})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GenerationResult(content=self.classification, stop_reason="end_turn")

    def generate_response_stream(self, messages, system_prompt=None, model_id=None, config=None) -> Iterator[Dict]:
        self.stream_calls.append({"messages": messages, "system_prompt": system_prompt,
                                  "model_id": model_id, "config": config})
        index = min(len(self.stream_calls), len(self.replies)) - 1
        for chunk in self.replies[index]:
            yield {"type": "text", "content": chunk}
        if self.stream_error is not None:
            raise self.stream_error
        yield {"type": "message_end", "usage": dict(self.usage), "stop_reason": "end_turn"}


def artifact(*actions: str, artifact_id: str = "build", title: str = "Build") -> str:
    return f'<artifact id="{artifact_id}" title="{title}">\n' + "\n".join(actions) + "\n</artifact>"


def file_action(path: str, content: str) -> str:
    return f'<action type="file" filePath="{path}">\n{content}\n</action>'


def shell_action(command: str) -> str:
    return f'<action type="shell">\n{command}\n</action>'


@pytest.fixture
def sandbox():
    return MemorySandbox()


@pytest.fixture
def seeded_sandbox():
    return MemorySandbox({
        "src/app.js": "export const app = 1;",
        "README.md": "# Project",
    })
