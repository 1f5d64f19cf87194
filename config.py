"""
Configuration module for Bedrock Builder.
Handles environment variables, model tiers, pipeline and quality gate settings.
"""

import os
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Generation settings shared by every tier"""
    max_tokens: int = int(os.getenv("MAX_TOKENS", "32000"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None
    throughput_mode: str = os.getenv("THROUGHPUT_MODE", "cross-region")

    # Extended thinking is only used for the pro tier
    enable_thinking: bool = _env_bool("ENABLE_THINKING", "false")
    thinking_budget: int = int(os.getenv("THINKING_BUDGET", "16000"))

    # Tier -> Bedrock model id
    lite_model: str = os.getenv("LITE_MODEL", "us.anthropic.claude-haiku-4-5-20251001-v1:0")
    standard_model: str = os.getenv("STANDARD_MODEL", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    pro_model: str = os.getenv("PRO_MODEL", "us.anthropic.claude-opus-4-6-v1")


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Bedrock Builder"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug_mode: bool = _env_bool("DEBUG_MODE", "false")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")


@dataclass
class PipelineConfig:
    """Build pipeline behaviour: classification, streaming, action queue"""
    # Client-side race against the classification call
    classify_timeout_ms: int = int(os.getenv("CLASSIFY_TIMEOUT_MS", "3000"))
    # "default" -> moderate when the classifier gives up, "keywords" -> heuristic classifier
    classify_fallback: str = os.getenv("CLASSIFY_FALLBACK", "default")
    # Emit actions as each artifact closes instead of after the full generation
    stream_incremental: bool = _env_bool("STREAM_INCREMENTAL", "false")
    enqueue_on_stream_error: bool = _env_bool("ENQUEUE_ON_STREAM_ERROR", "true")
    queue_stop_on_error: bool = _env_bool("QUEUE_STOP_ON_ERROR", "false")
    queue_max_history: int = int(os.getenv("QUEUE_MAX_HISTORY", "50"))
    # finished actions kept for rollback/retry; oldest are forgotten first
    queue_max_actions: int = int(os.getenv("QUEUE_MAX_ACTIONS", "500"))
    shell_timeout: int = int(os.getenv("SHELL_TIMEOUT", "300"))
    # Extra generation passes targeting blocking gate failures
    quality_fix_attempts: int = int(os.getenv("QUALITY_FIX_ATTEMPTS", "0"))


@dataclass
class GateSettings:
    """Per-gate switches. Thresholds live in options."""
    name: str
    enabled: bool = True
    blocking: bool = True
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, name: str, blocking_default: str = "true",
                 options: Optional[Dict[str, Any]] = None) -> "GateSettings":
        key = name.upper()
        return cls(
            name=name,
            enabled=_env_bool(f"GATE_{key}_ENABLED", "true"),
            blocking=_env_bool(f"GATE_{key}_BLOCKING", blocking_default),
            options=options or {},
        )


def default_gate_settings() -> Dict[str, GateSettings]:
    """Gate settings in run order. Accessibility is advisory unless overridden."""
    return {
        "lint": GateSettings.from_env("lint", options={
            "max_errors": int(os.getenv("LINT_MAX_ERRORS", "0")),
            "max_warnings": int(os.getenv("LINT_MAX_WARNINGS", "10")),
            "max_line_length": int(os.getenv("LINT_MAX_LINE_LENGTH", "120")),
            "ignore_patterns": ["node_modules/", "dist/", "build/", ".next/", "__pycache__/"],
        }),
        "typecheck": GateSettings.from_env("typecheck", options={
            "max_errors": int(os.getenv("TYPECHECK_MAX_ERRORS", "0")),
        }),
        "test": GateSettings.from_env("test"),
        "security": GateSettings.from_env("security", options={"max_issues": 0}),
        "accessibility": GateSettings.from_env("accessibility", blocking_default="false",
                                               options={"max_issues": 0}),
    }


# ============================================================
# Model catalog -- Anthropic Claude on Bedrock, one entry per tier default
# ============================================================
AVAILABLE_MODELS: List[Dict[str, Any]] = [
    {
        "id": "us.anthropic.claude-opus-4-6-v1",
        "name": "Claude Opus 4.6",
        "max_output_tokens": 128000,
        "supports_thinking": True,
        "requires_profile": True,
        # USD per 1M tokens
        "input_price": 5.00,
        "output_price": 25.00,
    },
    {
        "id": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        "name": "Claude Sonnet 4.5",
        "max_output_tokens": 64000,
        "supports_thinking": True,
        "requires_profile": True,
        "input_price": 3.00,
        "output_price": 15.00,
    },
    {
        "id": "us.anthropic.claude-haiku-4-5-20251001-v1:0",
        "name": "Claude Haiku 4.5",
        "max_output_tokens": 64000,
        "supports_thinking": True,
        "requires_profile": True,
        "input_price": 1.00,
        "output_price": 5.00,
    },
]


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()
pipeline_config = PipelineConfig()


def get_model_by_id(model_id: str) -> Optional[Dict[str, Any]]:
    """Get model configuration by ID"""
    for model in AVAILABLE_MODELS:
        if model["id"] == model_id:
            return model
    return None


def get_model_config(model_id: str) -> Dict[str, Any]:
    """Get the full configuration for a model. Unknown IDs get a minimal fallback;
    callers should use .get(key, default)."""
    model = get_model_by_id(model_id)
    if model:
        return model
    return {
        "id": model_id,
        "name": model_id,
        "max_output_tokens": 8192,
        "supports_thinking": False,
        "requires_profile": model_id.startswith(("us.", "eu.", "apac.")),
    }


def get_model_name(model_id: str) -> str:
    return get_model_config(model_id).get("name", model_id)


def get_max_output_tokens(model_id: str) -> int:
    return get_model_config(model_id).get("max_output_tokens", 4096)


def supports_thinking(model_id: str) -> bool:
    """Check if model supports extended thinking"""
    return get_model_config(model_id).get("supports_thinking", False)


def requires_inference_profile(model_id: str) -> bool:
    return get_model_config(model_id).get("requires_profile", False)


def model_for_tier(tier: str) -> str:
    """Map a router tier to the configured Bedrock model id"""
    mapping = {
        "lite": model_config.lite_model,
        "standard": model_config.standard_model,
        "pro": model_config.pro_model,
    }
    if tier not in mapping:
        raise ValueError(f"Unknown model tier: {tier!r}")
    return mapping[tier]


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default credential chain"
