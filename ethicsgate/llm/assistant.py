#!/usr/bin/env python3
"""
EthicsGate Remediation Assistant

Optional LLM-assisted analysis of a violation. Proposes alternative code
plus a rationale for the remediation stage. Supports Anthropic and any
OpenAI-compatible endpoint (OpenAI, Ollama, LM Studio, vLLM, ...).

The assistant is never required: it may be disabled, may have no provider
configured, and every call carries a hard timeout. Callers treat any
AssistProviderError as "no assisted candidates" and carry on.
"""

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ethicsgate.config.models import AssistConfig
from ethicsgate.models import Violation, clamp01

# Optional SDK imports - gracefully handle if not installed
try:
    import anthropic
    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False

try:
    import openai
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False


# Default models per provider
DEFAULT_MODELS = {
    "anthropic": "claude-3-5-haiku-latest",
    "openai": "gpt-4o-mini",
}

# Default env var names per provider
DEFAULT_API_KEY_ENVS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}

VALID_EFFORTS = ("low", "medium", "high", "critical_review")

logger = logging.getLogger(__name__)


class AssistProviderError(Exception):
    """Raised when an assist provider call fails."""

    def __init__(self, message: str, is_timeout: bool = False):
        super().__init__(message)
        self.is_timeout = is_timeout


@dataclass
class AssistSuggestion:
    """One alternative implementation proposed by the model."""
    code: str
    explanation: str
    confidence: float
    risk_reduction: float
    effort: str = "medium"


@dataclass
class AssistResponse:
    """Parsed result of an assisted analysis."""
    analysis: str
    confidence: float
    suggestions: List[AssistSuggestion] = field(default_factory=list)
    risk_assessment: Dict[str, Any] = field(default_factory=dict)
    provider: str = ""


# =============================================================================
# PROVIDER ABSTRACTION
# =============================================================================

class AssistProvider(ABC):
    """Abstract base for LLM assist providers."""

    @abstractmethod
    def call(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        """Send a prompt and return the response text.

        Raises:
            AssistProviderError: On timeout, API error, or other failure
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured and ready."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model name for logging."""
        ...


class AnthropicAssistProvider(AssistProvider):
    """Anthropic Claude provider using the anthropic SDK."""

    def __init__(self, model: str, api_key: str, timeout: float = 10.0):
        self._model = model
        self._api_key = api_key
        self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout)

    def call(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
            return response.content[0].text
        except anthropic.APITimeoutError as e:
            raise AssistProviderError(str(e), is_timeout=True) from e
        except anthropic.APIError as e:
            raise AssistProviderError(f"Anthropic API error: {e}") from e

    def is_available(self) -> bool:
        return bool(self._api_key)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model


class OpenAIAssistProvider(AssistProvider):
    """OpenAI-compatible provider using the openai SDK."""

    def __init__(
        self,
        model: str,
        api_key: str,
        timeout: float = 10.0,
        base_url: Optional[str] = None,
    ):
        self._model = model
        self._api_key = api_key
        self._base_url = base_url

        kwargs: Dict[str, Any] = {"api_key": api_key, "timeout": timeout}
        if base_url:
            kwargs["base_url"] = base_url
        self._client = openai.OpenAI(**kwargs)

    def call(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                max_tokens=max_tokens,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
            return response.choices[0].message.content or ""
        except openai.APITimeoutError as e:
            raise AssistProviderError(str(e), is_timeout=True) from e
        except openai.APIError as e:
            raise AssistProviderError(f"OpenAI API error: {e}") from e

    def is_available(self) -> bool:
        return bool(self._api_key) or bool(self._base_url)

    @property
    def name(self) -> str:
        if self._base_url:
            return f"openai-compatible ({self._base_url})"
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model


class FallbackAssistProvider(AssistProvider):
    """Tries several providers in priority order until one answers."""

    def __init__(self, providers: List[AssistProvider]):
        self._providers = [p for p in providers if p is not None]
        self._active_provider: Optional[AssistProvider] = None

    def call(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        last_error: Optional[AssistProviderError] = None
        for provider in self._providers:
            if not provider.is_available():
                continue
            try:
                result = provider.call(system_prompt, user_prompt, max_tokens)
                self._active_provider = provider
                return result
            except AssistProviderError as e:
                last_error = e
                logger.debug(f"Fallback: {provider.name} failed ({e}), trying next provider")

        raise AssistProviderError(
            f"All providers failed. Last error: {last_error}",
            is_timeout=getattr(last_error, "is_timeout", False),
        )

    def is_available(self) -> bool:
        return any(p.is_available() for p in self._providers)

    @property
    def name(self) -> str:
        if self._active_provider:
            return f"fallback({self._active_provider.name})"
        names = [p.name for p in self._providers if p.is_available()]
        return f"fallback({' -> '.join(names)})"

    @property
    def model_name(self) -> str:
        if self._active_provider:
            return self._active_provider.model_name
        for p in self._providers:
            if p.is_available():
                return p.model_name
        return "none"


# =============================================================================
# PROVIDER RESOLUTION
# =============================================================================

def _get_api_key(provider_name: str, api_key_env: Optional[str] = None) -> Optional[str]:
    env_name = api_key_env or DEFAULT_API_KEY_ENVS.get(provider_name)
    return os.environ.get(env_name) if env_name else None


def _build_provider(
    provider_name: str,
    model: str,
    timeout: float,
    base_url: Optional[str] = None,
    api_key_env: Optional[str] = None,
) -> Optional[AssistProvider]:
    resolved_model = DEFAULT_MODELS[provider_name] if model == "auto" else model
    api_key = _get_api_key(provider_name, api_key_env)

    if provider_name == "anthropic":
        if not ANTHROPIC_AVAILABLE or not api_key:
            return None
        return AnthropicAssistProvider(resolved_model, api_key, timeout)

    if provider_name == "openai":
        if not OPENAI_AVAILABLE or not (api_key or base_url):
            return None
        return OpenAIAssistProvider(resolved_model, api_key or "not-needed", timeout, base_url)

    return None


def resolve_provider(config: AssistConfig) -> Optional[AssistProvider]:
    """Create the provider described by an AssistConfig, or None if none is usable.

    Auto-detection priority:
    1. ANTHROPIC_API_KEY -> AnthropicAssistProvider
    2. OPENAI_API_KEY (or a base_url) -> OpenAIAssistProvider
    """
    timeout = config.timeout_seconds
    if config.provider in ("anthropic", "openai"):
        return _build_provider(
            config.provider, config.model, timeout, config.base_url, config.api_key_env
        )

    candidates = [
        _build_provider("anthropic", config.model, timeout),
        _build_provider("openai", config.model, timeout, config.base_url),
    ]
    candidates = [c for c in candidates if c is not None]
    if not candidates:
        return None
    if config.provider == "fallback" and len(candidates) > 1:
        return FallbackAssistProvider(candidates)
    return candidates[0]


# =============================================================================
# ASSISTANT
# =============================================================================

class RemediationAssistant:
    """
    LLM-assisted analysis of a violation with a bounded wait.

    ``analyze`` raises AssistProviderError on any failure so callers can
    drop the assisted source without failing the pipeline.
    """

    SYSTEM_PROMPT = """You are an ethics and compliance reviewer for source code.
You receive a code snippet and a detected violation. Propose safer alternative
implementations that remove the risky behaviour entirely.

Respond with ONLY a JSON object in this exact format:
{"analysis": "short assessment", "confidence": 0.0-1.0,
 "suggestions": [{"code": "replacement code", "explanation": "why", "confidence": 0.0-1.0,
                  "riskReduction": 0.0-1.0, "effort": "low|medium|high"}],
 "riskAssessment": {"intentionality": "accidental|deliberate|unclear", "severity": "low|medium|high|critical", "context": "short note"}}

Do not include any other text."""

    ANALYSIS_PROMPT = """Violation: {message}
Category: {category}
Severity: {severity}
Recommendation: {recommendation}
Language: {language}
File: {file}

Code:
```
{code}
```
{extra}"""

    def __init__(
        self,
        provider: Optional[AssistProvider] = None,
        timeout: float = 10.0,
        enabled: bool = True,
        max_tokens: int = 1024,
    ):
        self._provider = provider
        self.timeout = timeout
        self.enabled = enabled
        self.max_tokens = max_tokens

    @property
    def provider_name(self) -> str:
        return self._provider.name if self._provider else "none"

    def is_enabled(self) -> bool:
        return bool(self.enabled and self._provider and self._provider.is_available())

    def analyze(
        self,
        code: str,
        violation: Violation,
        context: Optional[Dict[str, Any]] = None,
    ) -> AssistResponse:
        """Ask the model for an assessment and alternative code."""
        if not self.is_enabled():
            raise AssistProviderError("assisted analysis is disabled")

        context = context or {}
        extra = context.get("notes", "")
        prompt = self.ANALYSIS_PROMPT.format(
            message=violation.message,
            category=violation.category.value,
            severity=violation.severity.value,
            recommendation=violation.recommendation,
            language=context.get("language", "unknown"),
            file=violation.file_path or context.get("file", ""),
            code=code[:4000],
            extra=f"\nNotes: {extra}\n" if extra else "",
        )

        response_text = self._call_with_timeout(prompt)
        parsed = self._parse_response(response_text)
        return AssistResponse(
            analysis=str(parsed.get("analysis", "")),
            confidence=clamp01(_as_float(parsed.get("confidence"), 0.5)),
            suggestions=_parse_suggestions(parsed.get("suggestions")),
            risk_assessment=dict(parsed.get("riskAssessment") or parsed.get("risk_assessment") or {}),
            provider=self.provider_name,
        )

    def _call_with_timeout(self, prompt: str) -> str:
        # The SDK timeout covers the HTTP call; this bounds the whole exchange
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ethicsgate-assist")
        future = pool.submit(self._provider.call, self.SYSTEM_PROMPT, prompt, self.max_tokens)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise AssistProviderError(
                f"assist provider {self.provider_name} timed out after {self.timeout}s",
                is_timeout=True,
            ) from e
        except AssistProviderError:
            raise
        except Exception as e:
            # SDK transport errors and custom provider bugs surface uniformly
            raise AssistProviderError(
                f"assist provider {self.provider_name} failed: {type(e).__name__}: {e}"
            ) from e
        finally:
            pool.shutdown(wait=False)

    @staticmethod
    def _parse_response(response_text: str) -> Dict[str, Any]:
        """Parse the JSON object from the model, tolerating code fences and chatter."""
        text = response_text.strip()
        fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.DOTALL)
        if fenced:
            text = fenced.group(1)
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            start, end = text.find("{"), text.rfind("}")
            if start == -1 or end <= start:
                raise AssistProviderError("assist response contained no JSON object")
            try:
                data = json.loads(text[start:end + 1])
            except json.JSONDecodeError as e:
                raise AssistProviderError(f"assist response was not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise AssistProviderError("assist response JSON was not an object")
        return data


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_suggestions(raw: Any) -> List[AssistSuggestion]:
    suggestions: List[AssistSuggestion] = []
    if not isinstance(raw, list):
        return suggestions
    for item in raw:
        if not isinstance(item, dict) or not str(item.get("code", "")).strip():
            continue
        effort = str(item.get("effort", "medium")).lower()
        suggestions.append(AssistSuggestion(
            code=str(item["code"]),
            explanation=str(item.get("explanation", "")),
            confidence=clamp01(_as_float(item.get("confidence"), 0.5)),
            risk_reduction=clamp01(_as_float(item.get("riskReduction", item.get("risk_reduction")), 0.5)),
            effort=effort if effort in VALID_EFFORTS else "medium",
        ))
    return suggestions


_assistant: Optional[RemediationAssistant] = None
_assistant_lock = threading.Lock()


def get_assistant(config: Optional[AssistConfig] = None) -> RemediationAssistant:
    """Get the shared assistant, resolving its provider on first use."""
    global _assistant
    if _assistant is None:
        with _assistant_lock:
            if _assistant is None:
                config = config or AssistConfig()
                provider = resolve_provider(config) if config.enabled else None
                if config.enabled and provider is None:
                    logger.info("Assisted remediation enabled but no provider is configured")
                _assistant = RemediationAssistant(
                    provider=provider,
                    timeout=config.timeout_seconds,
                    enabled=config.enabled,
                    max_tokens=config.max_tokens,
                )
    return _assistant


def reset_assistant() -> None:
    """Drop the shared assistant (for tests and config reloads)."""
    global _assistant
    with _assistant_lock:
        _assistant = None
