"""LLM provider abstraction."""

from shipspec.llm.litellm import LiteLLMProvider
from shipspec.llm.mock import MockLLMProvider
from shipspec.llm.provider import LLMProvider, LLMResponse, extract_json, parse_structured

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
    "extract_json",
    "parse_structured",
]
