"""
Shared mutable state for the web server.

The sandbox, action queue, Bedrock service and build pipeline are process
globals created lazily on first use. Import web.state and call the getters;
tests replace the globals directly.
"""

import logging
import threading
from typing import Optional

from config import app_config, pipeline_config
from sandbox import LocalSandbox, Sandbox
from pipeline.action_queue import ActionQueue
from pipeline.build import BuildPipeline
from pipeline.quality import QualityGateRunner
from pipeline.router import TokenLedger

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_working_directory: str = app_config.working_directory
_sandbox: Optional[Sandbox] = None
_queue: Optional[ActionQueue] = None
_service = None  # BedrockService, or a stand-in with the same methods
_gate_runner: Optional[QualityGateRunner] = None
_ledger: Optional[TokenLedger] = None
_pipeline: Optional[BuildPipeline] = None

_init_lock = threading.Lock()


def get_sandbox() -> Sandbox:
    global _sandbox
    with _init_lock:
        if _sandbox is None:
            _sandbox = LocalSandbox(_working_directory, command_timeout=pipeline_config.shell_timeout)
            logger.info(f"Sandbox rooted at {_sandbox.root}")
        return _sandbox


def get_queue() -> ActionQueue:
    global _queue
    sandbox = get_sandbox()
    with _init_lock:
        if _queue is None:
            _queue = ActionQueue(sandbox)
        return _queue


def get_service():
    global _service
    with _init_lock:
        if _service is None:
            from bedrock_service import BedrockService
            _service = BedrockService()
        return _service


def get_gate_runner() -> QualityGateRunner:
    global _gate_runner
    with _init_lock:
        if _gate_runner is None:
            _gate_runner = QualityGateRunner()
        return _gate_runner


def get_ledger() -> TokenLedger:
    global _ledger
    with _init_lock:
        if _ledger is None:
            _ledger = TokenLedger()
        return _ledger


def get_pipeline() -> BuildPipeline:
    global _pipeline
    service = get_service()
    sandbox = get_sandbox()
    queue = get_queue()
    runner = get_gate_runner()
    ledger = get_ledger()
    with _init_lock:
        if _pipeline is None:
            _pipeline = BuildPipeline(service, sandbox, queue=queue, gate_runner=runner, ledger=ledger)
        return _pipeline


def reset(working_directory: Optional[str] = None) -> None:
    """Drop every global so the next request rebuilds them (new --dir, tests)."""
    global _working_directory, _sandbox, _queue, _service, _gate_runner, _ledger, _pipeline
    with _init_lock:
        if working_directory is not None:
            _working_directory = working_directory
        _sandbox = None
        _queue = None
        _service = None
        _gate_runner = None
        _ledger = None
        _pipeline = None
