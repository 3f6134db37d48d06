"""
ABAP Documentation Workbench
LLM Gateway.

Provider-agnostic LLM router with:
    - Multi-provider support (Anthropic Claude, OpenAI, Gemini, local stub)
    - Model-name routing with fallback to the local stub when a provider
      has no API key configured
    - Auto-retry with exponential backoff
    - Token and latency reporting per call

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat(
        [{"role": "system", "content": "..."}, {"role": "user", "content": "..."}],
        model="gemini-2.5-flash",
    )
"""

import logging
import os
import re
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 16384
DEFAULT_TEMPERATURE = 0.3


def split_system(messages: list) -> tuple[str, list]:
    """Pull system messages out of a chat; multiple ones are joined by blank lines."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    chat_messages = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_parts), chat_messages


def _result(content: str, prompt_tokens: int, completion_tokens: int, model: str) -> dict:
    return {
        "content": content,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "model": model,
    }


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
                self._client = anthropic.Anthropic(api_key=self.api_key)
            except ImportError:
                raise RuntimeError("anthropic package not installed. Run: pip install anthropic")
        return self._client

    def chat(self, messages: list, model: str = "claude-sonnet-4-5", **kwargs) -> dict:
        client = self._get_client()

        system_msg, chat_messages = split_system(messages)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", DEFAULT_MAX_TOKENS),
            "temperature": kwargs.get("temperature", DEFAULT_TEMPERATURE),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)
        text = "".join(getattr(block, "text", "") for block in response.content)
        return _result(text, response.usage.input_tokens, response.usage.output_tokens, model)


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider."""

    def __init__(self):
        self.api_key = os.getenv("OPENAI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
                self._client = openai.OpenAI(api_key=self.api_key)
            except ImportError:
                raise RuntimeError("openai package not installed. Run: pip install openai")
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", DEFAULT_MAX_TOKENS),
            temperature=kwargs.get("temperature", DEFAULT_TEMPERATURE),
        )
        usage = response.usage
        return _result(
            response.choices[0].message.content or "",
            usage.prompt_tokens,
            usage.completion_tokens,
            model,
        )


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider.

    Models:
        - gemini-2.5-flash  (default; fast, long context)
        - gemini-2.5-pro    (complex reasoning)

    Environment:
        GEMINI_API_KEY: obtain at https://aistudio.google.com/apikey
    """

    def __init__(self):
        self.api_key = os.getenv("GEMINI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from google import genai
                self._client = genai.Client(api_key=self.api_key)
            except ImportError:
                raise RuntimeError(
                    "google-genai package not installed. Run: pip install google-genai"
                )
        return self._client

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        client = self._get_client()
        from google.genai import types

        system_text, chat_messages = split_system(messages)
        # Gemini names the assistant role "model"
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat_messages
        ]

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", DEFAULT_TEMPERATURE),
            max_output_tokens=kwargs.get("max_tokens", DEFAULT_MAX_TOKENS),
            system_instruction=system_text or None,
        )
        response = client.models.generate_content(model=model, contents=contents, config=config)

        usage = response.usage_metadata
        return _result(
            response.text or "",
            getattr(usage, "prompt_token_count", 0) or 0,
            getattr(usage, "candidates_token_count", 0) or 0,
            model,
        )


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

_STUB_FILE_MARKER = re.compile(r"^\*\*\* FILE: (.+?) \*\*\*$", re.MULTILINE)
_STUB_PARAM_LINE = re.compile(r"^- \*\*([^*]+):\*\* (.+)$", re.MULTILINE)


class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic Markdown for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        content = self._generate_stub_response(user_msg)
        # word counts doubled as a rough token estimate
        return _result(content, len(user_msg.split()) * 2, len(content.split()) * 2, "local-stub")

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        """Outline a document from the files or parameters found in the prompt."""
        files = _STUB_FILE_MARKER.findall(user_msg)
        if files:
            lines = [
                "# Technical Specification",
                "",
                "## 1. Overview",
                f"Generated offline from {len(files)} source file(s).",
                "",
                "## 2. Source Files",
            ]
            lines.extend(f"- {name}" for name in files)
            if "## Data Dictionary" in user_msg or "## Function Groups" in user_msg:
                lines.extend(["", "## 3. Data Dictionary", "See attached metadata context."])
            return "\n".join(lines)

        params = dict(_STUB_PARAM_LINE.findall(user_msg))
        title = params.get("Project") or "Functional Specification"
        lines = [f"# {title}", "", "## 1. Business Requirement", "Generated offline."]
        if params:
            lines.extend(["", "## 2. Project Parameters"])
            lines.extend(f"- **{k}**: {v}" for k, v in params.items())
        return "\n".join(lines)


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Fallback to the local stub when the routed provider is unavailable

    Usage:
        gw = LLMGateway()
        result = gw.chat(messages, model="claude-sonnet-4-5", max_tokens=16384)
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        # Anthropic
        "claude-sonnet-4-5": "anthropic",
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        # OpenAI
        "gpt-4o-mini": "openai",
        "gpt-4o": "openai",
        "gpt-4.1": "openai",
        # Google Gemini
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        "gemini-2.0-flash": "gemini",
        # Local stub (dev/test)
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gemini-2.5-flash")

    def __init__(self, default_model: str | None = None):
        self._providers: dict[str, LLMProvider] = {}
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self._init_providers()

    def _init_providers(self):
        """Initialize available providers based on environment."""
        # Always register local stub
        self._providers["local"] = LocalStubProvider()

        # Register real providers if API keys present
        if os.getenv("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider()
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider()
        if os.getenv("OPENAI_API_KEY"):
            self._providers["openai"] = OpenAIProvider()

    @property
    def available_providers(self) -> list[str]:
        return sorted(self._providers)

    def register_provider(self, name: str, provider: LLMProvider) -> None:
        self._providers[name] = provider

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to local stub if real provider unavailable.
        Returns (provider, provider_name).
        """
        provider_name = self.PROVIDER_MAP.get(model, "local")

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        max_retries: int = 3,
        **kwargs,
    ) -> dict:
        """
        Send a chat completion request with retry.

        Args:
            messages: Chat messages.
            model: Model identifier (defaults to the gateway's default model).
            purpose: What the call is for (logged only).
            max_retries: Number of attempts before giving up.
            **kwargs: temperature, max_tokens passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}

        Raises:
            RuntimeError: every attempt failed.
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)

        last_error = None
        for attempt in range(1, max_retries + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning(
                    "LLM call attempt %d/%d failed (provider=%s model=%s): %s",
                    attempt, max_retries, provider_name, model, e,
                )
                if attempt < max_retries:
                    time.sleep(min(2 ** (attempt - 1), 4))
                continue

            latency_ms = int((time.time() - start_time) * 1000)
            result["latency_ms"] = latency_ms
            result["provider"] = provider_name
            logger.info(
                "LLM call ok purpose=%s provider=%s model=%s tokens=%d+%d latency=%dms",
                purpose or "-", provider_name, result["model"],
                result["prompt_tokens"], result["completion_tokens"], latency_ms,
            )
            return result

        raise RuntimeError(f"LLM call failed after {max_retries} retries: {last_error}")
