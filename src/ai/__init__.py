"""
AI Package for Futures Trading Bot.

This package provides the OpenRouter-compatible decision oracle.

Modules:
    ai_decision_client: Chat completions client with HOLD fallback
"""

from src.ai.ai_decision_client import (
    AIClientConfig,
    AIDecision,
    AIDecisionClient,
    SYSTEM_PROMPT,
    build_prompt,
    extract_json,
)


__all__ = [
    "AIClientConfig",
    "AIDecision",
    "AIDecisionClient",
    "SYSTEM_PROMPT",
    "build_prompt",
    "extract_json",
]
