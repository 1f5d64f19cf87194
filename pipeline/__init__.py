"""
Pipeline package - turns a natural-language build request into applied,
verified file changes.

- types: data types shared by every stage
- prompts: system prompts and prompt builders
- classifier: request classification with a client-side timeout
- router: per-phase model tier selection and token cost tracking
- parser: streaming <artifact>/<action> extraction
- stream: SSE framing of generation events
- generation: model stream to text/action/done/error events
- action_queue: sequential action execution with rollback and retry
- quality: quality gates and their runner
- build: BuildPipeline orchestrating all of the above
"""

from .types import (
    Action,
    Artifact,
    ClassificationResult,
    ClassifyResponse,
    ModelSelection,
    PipelineEvent,
    QueuedAction,
    StreamEvent,
    mode_severity,
)
from .classifier import classify, classify_request, classify_keywords, default_classification
from .router import select_model, TokenLedger
from .parser import ArtifactParser, parse_actions, parse_artifacts
from .stream import SSEDecoder, encode_event, iter_events, dispatch_events
from .generation import stream_generation
from .action_queue import ActionQueue, QueueEvent
from .quality import QualityGateRunner, QualityGateResult, format_results
from .build import BuildPipeline, BuildReport

__all__ = [
    # Data types
    "Action",
    "Artifact",
    "ClassificationResult",
    "ClassifyResponse",
    "ModelSelection",
    "PipelineEvent",
    "QueuedAction",
    "StreamEvent",
    "mode_severity",

    # Classification and routing
    "classify",
    "classify_request",
    "classify_keywords",
    "default_classification",
    "select_model",
    "TokenLedger",

    # Streaming
    "ArtifactParser",
    "parse_actions",
    "parse_artifacts",
    "SSEDecoder",
    "encode_event",
    "iter_events",
    "dispatch_events",
    "stream_generation",

    # Execution and verification
    "ActionQueue",
    "QueueEvent",
    "QualityGateRunner",
    "QualityGateResult",
    "format_results",
    "BuildPipeline",
    "BuildReport",
]
