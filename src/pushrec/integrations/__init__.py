"""HTTP clients for the knowledge base, language model and push services."""

from .llm_client import LlmClient, llm_settings
from .push_client import PushClient, push_settings
from .rag_client import RagClient, rag_settings

__all__ = [
    "LlmClient",
    "PushClient",
    "RagClient",
    "llm_settings",
    "push_settings",
    "rag_settings",
]
