"""Provider adapters for llm-streamloop."""

from llm_streamloop.adapters.base import ProviderAdapter
from llm_streamloop.adapters.openai_compat import OpenAICompatibleAdapter

__all__ = ["OpenAICompatibleAdapter", "ProviderAdapter"]
