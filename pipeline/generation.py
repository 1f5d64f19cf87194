"""
Producing side of the generation stream: turns a streamed model response into
text, action, done and error events.
"""

import logging
import threading
from typing import Dict, Iterator, List, Optional

from config import model_config, supports_thinking, get_max_output_tokens
from .parser import ArtifactParser
from .prompts import system_prompt_for_mode
from .router import TokenLedger
from .types import ModelSelection, StreamEvent

logger = logging.getLogger(__name__)


def _generation_config(selection: ModelSelection):
    from bedrock_service import GenerationConfig
    thinking = (
        model_config.enable_thinking
        and selection.tier == "pro"
        and supports_thinking(selection.model_id)
    )
    return GenerationConfig(
        max_tokens=min(model_config.max_tokens, get_max_output_tokens(selection.model_id)),
        temperature=model_config.temperature,
        throughput_mode=model_config.throughput_mode,
        enable_thinking=thinking,
        thinking_budget=model_config.thinking_budget,
    )


def stream_generation(
    service,
    prompt: str,
    selection: ModelSelection,
    mode: str = "moderate",
    history: Optional[List[Dict]] = None,
    incremental: bool = False,
    abort: Optional[threading.Event] = None,
    ledger: Optional[TokenLedger] = None,
) -> Iterator[StreamEvent]:
    """Yield text events as the model streams, then the parsed actions, then done.

    With incremental=True each artifact's actions are yielded as soon as it
    closes. A service failure ends the stream with one error event; an abort
    ends it with nothing further.
    """
    messages = list(history or []) + [{"role": "user", "content": prompt}]
    parser = ArtifactParser()
    full_text = []
    emitted = 0

    try:
        stream = service.generate_response_stream(
            messages=messages,
            system_prompt=system_prompt_for_mode(mode),
            model_id=selection.model_id or None,
            config=_generation_config(selection),
        )
        for chunk in stream:
            if abort is not None and abort.is_set():
                logger.info("Generation aborted")
                return
            kind = chunk.get("type")
            if kind == "text":
                text = chunk.get("content", "")
                if not text:
                    continue
                full_text.append(text)
                yield StreamEvent(type="text", content=text)
                if incremental:
                    for action in parser.feed(text).actions:
                        emitted += 1
                        yield StreamEvent(type="action", action=action)
            elif kind == "message_end" and ledger is not None:
                usage = chunk.get("usage") or {}
                ledger.record(selection.phase, selection.tier,
                              usage.get("input_tokens", 0), usage.get("output_tokens", 0))
    except Exception as e:
        logger.error(f"Generation failed: {e}")
        yield StreamEvent(type="error", message=str(e) or e.__class__.__name__)
        return

    if abort is not None and abort.is_set():
        return

    if incremental:
        parser.finalize()
    else:
        parser.feed("".join(full_text))
        parser.finalize()
        for action in parser.actions:
            if abort is not None and abort.is_set():
                return
            emitted += 1
            yield StreamEvent(type="action", action=action)

    logger.info(f"Generation finished: {sum(len(t) for t in full_text)} chars, {emitted} action(s)")
    yield StreamEvent(type="done")
