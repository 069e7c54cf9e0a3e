"""Decision-function layer - LLM client and output validation."""

from token_filter_pipeline.llm.client import (
    DecisionFunction,
    LLMClient,
    LLMClientError,
    LLMTransientError,
)
from token_filter_pipeline.llm.parsing import DecisionParseError, extract_json

__all__ = [
    "DecisionFunction",
    "DecisionParseError",
    "LLMClient",
    "LLMClientError",
    "LLMTransientError",
    "extract_json",
]
