"""Optional LLM-assisted remediation."""

from ethicsgate.llm.assistant import (
    AssistProvider,
    AssistProviderError,
    AssistResponse,
    AssistSuggestion,
    RemediationAssistant,
    get_assistant,
    reset_assistant,
)

__all__ = [
    "AssistProvider", "AssistProviderError", "AssistResponse", "AssistSuggestion",
    "RemediationAssistant", "get_assistant", "reset_assistant",
]
