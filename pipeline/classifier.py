"""
Request classification for build routing.
Maps a free-text request to a Mode using a fast model call raced against a
timeout, with a keyword heuristic available as fallback.
"""

import json
import logging
import math
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, List, Optional

from config import pipeline_config, model_for_tier
from .prompts import CLASSIFY_SYSTEM, build_classification_prompt
from .types import ClassificationResult, ClassifyResponse, DOMAINS, DEFAULT_MODE

logger = logging.getLogger(__name__)

# Classification calls outlive their timeout; they finish in the background
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="classify")


def _extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced {...} object in text, ignoring fences and prose."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
    brace_start = text.find("{")
    if brace_start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(brace_start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[brace_start:i + 1]
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_classification(text: str) -> Optional[ClassificationResult]:
    """Turn a model answer into a ClassificationResult, or None if it is not the expected shape."""
    raw = _extract_json_object(text or "")
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    if (
        not isinstance(parsed.get("isQuestion"), bool)
        or not _is_number(parsed.get("estimatedFiles"))
        or not isinstance(parsed.get("domains"), list)
        or not _is_number(parsed.get("complexityScore"))
    ):
        return None

    is_question = parsed["isQuestion"]
    # halves round up; the score is clamped but kept as given
    files = max(0, math.floor(parsed["estimatedFiles"] + 0.5))
    score = max(1, min(20, parsed["complexityScore"]))
    needs_research = bool(parsed.get("needsResearch"))
    needs_planning = bool(parsed.get("needsPlanning"))
    domains = frozenset(d for d in parsed["domains"] if isinstance(d, str) and d in DOMAINS)

    if is_question:
        mode, confidence = "question", 0.9
    elif needs_research and score >= 12:
        mode, confidence = "mega-complex", 0.85
    elif score >= 10 or files >= 6:
        mode, confidence = "complex", 0.8
    elif score >= 4 or files >= 3:
        mode, confidence = "moderate", 0.85
    else:
        mode, confidence = "simple", 0.9

    reasoning = str(parsed.get("reasoning") or "").strip()
    if not reasoning:
        reasoning = f"Complexity score: {score}, {files} files, {len(domains)} domains"

    return ClassificationResult(
        mode=mode,
        estimated_files=files,
        domains=domains,
        confidence=confidence,
        reasoning=f"[AI] {reasoning}",
        complexity_score=score,
        needs_research=needs_research,
        needs_planning=needs_planning,
    )


def _ask_model(prompt: str, service) -> Optional[ClassificationResult]:
    from bedrock_service import GenerationConfig
    config = GenerationConfig(
        max_tokens=500,
        temperature=0.1,
        enable_thinking=False,
    )
    resp = service.generate_response(
        messages=[{"role": "user", "content": build_classification_prompt(prompt)}],
        system_prompt=CLASSIFY_SYSTEM,
        model_id=model_for_tier("lite"),
        config=config,
    )
    return parse_classification(resp.content)


def classify_request(prompt: str, service, timeout_ms: Optional[int] = None) -> ClassifyResponse:
    """Classify with the model, racing the call against timeout_ms.

    Returns ClassifyResponse(result=None, used_llm=False) on timeout, service
    failure or an unparseable answer. Never retries.
    """
    stripped = (prompt or "").strip()
    if not stripped or service is None:
        return ClassifyResponse()
    if timeout_ms is None:
        timeout_ms = pipeline_config.classify_timeout_ms

    future = _executor.submit(_ask_model, stripped, service)
    try:
        result = future.result(timeout=max(timeout_ms, 0) / 1000.0)
    except FutureTimeout:
        future.cancel()
        logger.warning(f"Classification timed out after {timeout_ms}ms")
        return ClassifyResponse()
    except Exception as e:
        logger.warning(f"Classification failed ({e})")
        return ClassifyResponse()

    if result is None:
        logger.warning(f"Classification answer was not valid JSON for: {stripped[:80]}")
        return ClassifyResponse()

    logger.info(f"Classified as {result.mode} ({result.confidence:.2f}) for: {stripped[:80]}")
    return ClassifyResponse(result=result, used_llm=True)


def classify(prompt: str, service, timeout_ms: Optional[int] = None) -> Optional[ClassificationResult]:
    """Model classification or None. Callers fall back to default_classification()."""
    return classify_request(prompt, service, timeout_ms).result


def default_classification(reason: str = "Classification unavailable") -> ClassificationResult:
    return ClassificationResult(
        mode=DEFAULT_MODE,
        estimated_files=3,
        confidence=0.5,
        reasoning=f"{reason}; defaulting to {DEFAULT_MODE}",
    )


# ============================================================
# Keyword classifier
# ============================================================

QUESTION_PATTERNS = [
    re.compile(r"^(what|how|why|when|where|who|which|can|could|would|should|is|are|do|does)\s", re.I),
    re.compile(r"^(explain|describe|tell me)\s", re.I),
    re.compile(r"^(help me understand|i need to understand|help me learn)\s", re.I),
    re.compile(r"\?$"),
]

IMPLEMENTATION_KEYWORDS = [
    "build", "create", "implement", "develop", "make",
    "design", "construct", "generate", "setup", "set up",
]

FILE_INDICATOR_KEYWORDS = [
    "component", "page", "layout", "template", "view", "screen",
    "hook", "context", "provider", "reducer", "store",
    "button", "form", "modal", "dialog", "table", "card", "list",
    "header", "footer", "sidebar", "navbar", "menu", "dropdown",
    "api", "endpoint", "route", "controller", "service",
    "model", "schema", "middleware", "handler",
    "util", "helper", "formatter", "parser",
    "config", "settings", "constants", "types",
    "theme", "dark mode", "authentication", "search", "filter", "pagination",
]

DOMAIN_KEYWORDS = {
    "frontend": ["component", "page", "ui", "layout", "responsive", "jsx", "tsx", "react",
                 "vue", "angular", "svelte", "form", "modal", "button", "navbar", "sidebar"],
    "backend": ["server", "endpoint", "route", "controller", "handler", "middleware",
                "express", "fastapi", "flask", "django"],
    "database": ["database", "db", "schema", "query", "sql", "postgres", "mysql", "sqlite",
                 "redis", "mongo", "migration", "persist", "storage"],
    "auth": ["auth", "login", "logout", "session", "token", "jwt", "password", "signup",
             "oauth", "sso", "permission", "authentication", "authorization"],
    "api": ["api", "fetch", "rest", "graphql", "request", "response", "http", "websocket"],
    "styling": ["css", "style", "tailwind", "theme", "color", "animation", "dark mode",
                "sass", "scss", "gradient", "shadow"],
    "testing": ["test", "tests", "jest", "vitest", "pytest", "cypress", "playwright",
                "e2e", "mock", "coverage"],
    "infrastructure": ["deploy", "docker", "kubernetes", "ci/cd", "pipeline", "terraform",
                       "aws", "cloud", "hosting"],
}

COMPLEXITY_KEYWORDS = [
    ("full", 2), ("complete", 2), ("entire", 2), ("whole", 2), ("system", 2),
    ("platform", 3), ("application", 3), ("dashboard", 2), ("e-commerce", 3),
    ("checkout", 2), ("crud", 2), ("management", 2), ("admin", 2),
    ("with", 1), ("and", 0.5), ("also", 0.5), ("including", 1),
    ("multiple", 1), ("several", 1), ("all", 1),
]

RESEARCH_KEYWORDS = [
    "research", "discover", "analyze", "compare", "competitors", "competition",
    "market", "best practices", "industry", "trends", "alternatives", "investigate", "survey",
]

PRODUCT_KEYWORDS = [
    "product", "application", "platform", "system", "solution", "saas", "app",
    "website", "portal", "dashboard", "marketplace", "software",
]

SCALE_KEYWORDS = [
    "complete", "full", "entire", "comprehensive", "end-to-end", "production",
    "enterprise", "scalable", "robust", "feature-rich", "fully-featured",
]


def _matches(keyword: str, text: str) -> int:
    return len(re.findall(rf"\b{re.escape(keyword)}\b", text, re.I))


def _found(keywords: List[str], text: str) -> List[str]:
    return [kw for kw in keywords if _matches(kw, text)]


def classify_keywords(prompt: str) -> ClassificationResult:
    """Deterministic keyword classifier. Never raises, never calls a model."""
    stripped = (prompt or "").strip()
    lower = stripped.lower()

    if any(p.search(stripped) for p in QUESTION_PATTERNS) and not _found(IMPLEMENTATION_KEYWORDS, lower):
        return ClassificationResult(
            mode="question",
            confidence=0.9,
            reasoning="Request appears to be a question, not a code generation task",
        )

    domains = frozenset(d for d, kws in DOMAIN_KEYWORDS.items() if _found(kws, lower))
    research = _found(RESEARCH_KEYWORDS, lower)
    product = _found(PRODUCT_KEYWORDS, lower)
    scale = _found(SCALE_KEYWORDS, lower)
    implementation = _found(IMPLEMENTATION_KEYWORDS, lower)

    needs_product = bool(product) and bool(implementation)
    needs_architecture = bool(scale) or len(product) >= 2
    multi_phase = len(scale) >= 2 or needs_product
    if research and needs_product and needs_architecture and multi_phase:
        return ClassificationResult(
            mode="mega-complex",
            estimated_files=20,
            domains=domains,
            confidence=0.85,
            reasoning=f"Research, product definition and phased build needed ({', '.join(research)})",
            needs_research=True,
            needs_planning=True,
            detected_keywords=tuple(research + product + scale),
        )

    indicators = _found(FILE_INDICATOR_KEYWORDS, lower)
    score = sum(weight * _matches(kw, lower) for kw, weight in COMPLEXITY_KEYWORDS)
    word_count = len(lower.split())
    if word_count > 50:
        score += 2
    elif word_count > 30:
        score += 1

    files = len(indicators) + max(0, len(domains) - 1) + int(score // 3)
    if files == 0 and (indicators or domains):
        files = 1

    if score >= 10 or (score >= 6 and len(domains) >= 2) or files > 5 or len(domains) >= 3:
        mode, confidence = "complex", 0.7
    elif score >= 4 or files > 2 or (files >= 2 and domains):
        mode, confidence = "moderate", 0.75
    else:
        mode, confidence = "simple", 0.85

    return ClassificationResult(
        mode=mode,
        estimated_files=files,
        domains=domains,
        confidence=confidence,
        reasoning=f"{mode.capitalize()} task: ~{files} file(s), {len(domains)} domain(s), complexity score {score:g}",
        complexity_score=max(1, min(20, int(round(score)))),
        needs_planning=mode == "complex",
        detected_keywords=tuple(indicators),
    )
