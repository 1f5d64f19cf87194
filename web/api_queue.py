"""
Action queue REST API endpoints: state, history, enqueue, rollback and retry.
"""

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/queue")
async def api_queue_state():
    return JSONResponse(_state.get_queue().get_state())


@router.get("/api/queue/history")
async def api_queue_history():
    history = _state.get_queue().get_history()
    return JSONResponse({"history": [h.to_dict() for h in history]})


@router.post("/api/queue")
async def api_queue_enqueue(request: Request):
    """{actions: [{type, content, filePath?}]} -> ids of the queued actions"""
    try:
        body = await request.json()
    except ValueError:
        body = None
    actions = body.get("actions") if isinstance(body, dict) else None
    if not isinstance(actions, list):
        return JSONResponse({"ok": False, "error": "actions must be a list"}, status_code=400)
    try:
        queued = _state.get_queue().enqueue(actions)
    except (ValueError, AttributeError) as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
    return JSONResponse({"ok": True, "ids": [qa.id for qa in queued]})


@router.post("/api/queue/rollback/{action_id}")
async def api_queue_rollback(action_id: str):
    queue = _state.get_queue()
    if queue.get_action(action_id) is None:
        return JSONResponse({"ok": False, "error": "Action not found"}, status_code=404)
    ok = await asyncio.to_thread(queue.rollback, action_id)
    if not ok:
        return JSONResponse({"ok": False, "error": "Action cannot be rolled back"}, status_code=409)
    return JSONResponse({"ok": True})


@router.post("/api/queue/rollback-all")
async def api_queue_rollback_all():
    count = await asyncio.to_thread(_state.get_queue().rollback_all)
    return JSONResponse({"ok": True, "rolledBack": count})


@router.post("/api/queue/retry/{action_id}")
async def api_queue_retry(action_id: str):
    queue = _state.get_queue()
    if queue.get_action(action_id) is None:
        return JSONResponse({"ok": False, "error": "Action not found"}, status_code=404)
    if not queue.retry_action(action_id):
        return JSONResponse({"ok": False, "error": "Only failed actions can be retried"}, status_code=409)
    return JSONResponse({"ok": True})
