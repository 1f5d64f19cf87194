"""
Pipeline REST API endpoints.

Handles request classification, streamed generation (SSE), quality gate
runs over posted files, and full builds.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Iterator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

import web.state as _state
from config import pipeline_config
from pipeline.classifier import classify_request
from pipeline.generation import stream_generation
from pipeline.prompts import build_generation_prompt
from pipeline.router import select_model
from pipeline.stream import encode_event
from pipeline.types import MODES, DEFAULT_MODE, StreamEvent

logger = logging.getLogger(__name__)

router = APIRouter()


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _prompt_of(body: Dict[str, Any]) -> str:
    prompt = body.get("prompt")
    return prompt.strip() if isinstance(prompt, str) else ""


# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------

@router.post("/api/classify")
async def api_classify(request: Request):
    """{prompt, timeout_ms?} -> {result, usedLLM}"""
    body = await _json_body(request)
    prompt = _prompt_of(body)
    if not prompt:
        return JSONResponse({"error": "Missing prompt"}, status_code=400)
    timeout_ms = body.get("timeout_ms", body.get("timeoutMs"))
    if not isinstance(timeout_ms, int) or timeout_ms <= 0:
        timeout_ms = pipeline_config.classify_timeout_ms
    service = _state.get_service()
    response = await asyncio.to_thread(classify_request, prompt, service, timeout_ms)
    return JSONResponse(response.to_dict())


# ------------------------------------------------------------------
# Streamed generation
# ------------------------------------------------------------------

@router.post("/api/generate")
async def api_generate(request: Request):
    """{prompt, mode?, complexityScore?, files?, history?} -> text/event-stream"""
    body = await _json_body(request)
    prompt = _prompt_of(body)
    if not prompt:
        return JSONResponse({"error": "Missing prompt"}, status_code=400)
    mode = body.get("mode") if body.get("mode") in MODES else DEFAULT_MODE
    score = body.get("complexityScore")
    selection = select_model("execute", mode, score if isinstance(score, int) else None)
    files = body.get("files") if isinstance(body.get("files"), dict) else None
    history = body.get("history") if isinstance(body.get("history"), list) else None
    service = _state.get_service()
    ledger = _state.get_ledger()
    abort = threading.Event()

    def events() -> Iterator[str]:
        try:
            for event in stream_generation(
                service, build_generation_prompt(prompt, files), selection,
                mode=mode, history=history,
                incremental=pipeline_config.stream_incremental,
                abort=abort, ledger=ledger,
            ):
                yield encode_event(event)
        except Exception as e:
            logger.error(f"Generate stream failed: {e}")
            yield encode_event(StreamEvent(type="error", message=str(e)))
        finally:
            # client went away or stream ended
            abort.set()

    logger.info(f"Generate: mode={mode} tier={selection.tier}")
    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ------------------------------------------------------------------
# Quality gates
# ------------------------------------------------------------------

@router.post("/api/quality")
async def api_quality(request: Request):
    """{files: [{path, content}], testFiles?} -> QualityGateResult"""
    body = await _json_body(request)
    files = body.get("files")
    if not isinstance(files, list):
        return JSONResponse({"error": "files must be a list of {path, content}"}, status_code=400)
    test_files = body.get("testFiles")
    if test_files is not None and not isinstance(test_files, list):
        return JSONResponse({"error": "testFiles must be a list of {path, content}"}, status_code=400)
    runner = _state.get_gate_runner()
    try:
        result = await asyncio.to_thread(runner.run_all, files, test_files)
    except (KeyError, TypeError, ValueError) as e:
        return JSONResponse({"error": f"Invalid file entry: {e}"}, status_code=400)
    return JSONResponse(result.to_dict())


# ------------------------------------------------------------------
# Full build
# ------------------------------------------------------------------

@router.post("/api/build")
async def api_build(request: Request):
    """{prompt, files?, runGates?} -> BuildReport"""
    body = await _json_body(request)
    prompt = _prompt_of(body)
    if not prompt:
        return JSONResponse({"error": "Missing prompt"}, status_code=400)
    context = body.get("files") if isinstance(body.get("files"), dict) else None
    run_gates = body.get("runGates", True) is not False
    pipeline = _state.get_pipeline()
    try:
        report = await asyncio.to_thread(pipeline.run, prompt, context, None, None, run_gates)
    except Exception as e:
        logger.error(f"Build failed: {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)
    return JSONResponse(report.to_dict())
