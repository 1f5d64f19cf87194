"""
Bedrock Builder HTTP API server.
FastAPI routes over the build pipeline: classify, generate (SSE), queue, quality, build.

Run:  python -m web [--port 8765] [--dir /path/to/project]
"""

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

import web.state as _state
from web import api_pipeline, api_queue

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title="Bedrock Builder")


@app.on_event("shutdown")
async def _on_shutdown():
    """Skip actions that never started; the running one finishes."""
    queue = _state._queue
    if queue is not None:
        cancelled = queue.cancel_pending()
        if cancelled:
            logger.info("Shutdown: cancelled %d pending action(s)", cancelled)


@app.get("/api/health")
async def api_health():
    return {"ok": True, "workingDirectory": _state._working_directory}


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(api_pipeline.router)
app.include_router(api_queue.router)
