"""
AI Company Workflow Engine
LLM Gateway.

Routes the reviewer's chat calls to a provider picked from the model name:

    claude-*      → Anthropic   (needs ANTHROPIC_API_KEY and the ``llm`` extra)
    gpt-*, o1-*   → OpenAI      (needs OPENAI_API_KEY and the ``llm`` extra)
    local-stub    → LocalStubProvider, always available

A model whose provider has no key configured, or whose family is unknown,
is served by the local stub so that dev and test runs never need network
access. Every call is retried with capped exponential backoff.

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "Review this deliverable"}],
                     purpose="deliverable_review")
"""

import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

LOCAL = "local"


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """One chat-completion backend."""

    name = ""
    api_key_env = ""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, timeout.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...

    @classmethod
    def configured(cls) -> bool:
        return not cls.api_key_env or bool(os.getenv(cls.api_key_env))


def _split_system(messages: list) -> tuple[str, list]:
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    return system, [m for m in messages if m["role"] != "system"]


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    name = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"

    def __init__(self):
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise RuntimeError("anthropic package not installed. Run: pip install '.[llm]'")
            self._client = anthropic.Anthropic(api_key=os.getenv(self.api_key_env, ""))
        return self._client

    def chat(self, messages: list, model: str, **kwargs) -> dict:
        system, turns = _split_system(messages)
        params = {
            "model": model,
            "messages": turns,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system:
            params["system"] = system
        if kwargs.get("timeout"):
            params["timeout"] = kwargs["timeout"]

        response = self._get_client().messages.create(**params)
        return {
            "content": "".join(block.text for block in response.content if block.type == "text"),
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    name = "openai"
    api_key_env = "OPENAI_API_KEY"

    def __init__(self):
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise RuntimeError("openai package not installed. Run: pip install '.[llm]'")
            self._client = openai.OpenAI(api_key=os.getenv(self.api_key_env, ""))
        return self._client

    def chat(self, messages: list, model: str, **kwargs) -> dict:
        params = {
            "model": model,
            "messages": messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if kwargs.get("timeout"):
            params["timeout"] = kwargs["timeout"]
        response = self._get_client().chat.completions.create(**params)
        return {
            "content": response.choices[0].message.content or "",
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Deterministic replies shaped like the three workflow prompts:
    review verdicts, generated deliverables and phase summaries.
    """

    name = LOCAL

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        content = self.reply_to(user_msg)
        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def reply_to(user_msg: str) -> str:
        lower = user_msg.lower()

        if "review" in lower and "quality_score" in lower:
            return json.dumps({
                "approved": True,
                "quality_score": 8,
                "feedback": "Clear structure and actionable recommendations. "
                            "Ready for the owner's sign-off.",
            })

        if "executive summary" in lower:
            return (
                "The phase delivered its full deliverable set. Findings are "
                "consistent across agents and the next phase can build on them."
            )

        if "generate" in lower or "deliverable" in lower:
            return "```json\n" + json.dumps({
                "title": "Stub deliverable",
                "summary": "Deterministic content produced without an LLM provider.",
                "sections": [
                    {"heading": "Overview", "body": "Key points and recommendations."},
                ],
                "citations": [],
            }) + "\n```"

        return (
            "Local stub reply. Set ANTHROPIC_API_KEY or OPENAI_API_KEY and pick a "
            "claude-* or gpt-* model to reach a real provider."
        )


# ── Gateway ──────────────────────────────────────────────────────────────────

# Model-name prefix → provider class
MODEL_FAMILIES = (
    ("claude-", AnthropicProvider),
    ("gpt-", OpenAIProvider),
    ("o1-", OpenAIProvider),
    ("local-stub", LocalStubProvider),
)


class LLMGateway:
    """
    Single entry point for LLM calls.

    Providers are created lazily, once per gateway, and only for families
    whose API key is configured.
    """

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "claude-3-5-haiku-20241022")

    def __init__(self, default_model: str | None = None, backoff_cap: float = 4.0):
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self.backoff_cap = backoff_cap
        self._providers: dict[str, LLMProvider] = {LOCAL: LocalStubProvider()}

    @staticmethod
    def provider_for(model: str) -> str:
        """Provider name that would serve ``model``, accounting for missing keys."""
        for prefix, cls in MODEL_FAMILIES:
            if model.startswith(prefix):
                return cls.name if cls.configured() else LOCAL
        return LOCAL

    def _get_provider(self, model: str) -> LLMProvider:
        name = self.provider_for(model)
        if name not in self._providers:
            cls = next(c for _, c in MODEL_FAMILIES if c.name == name)
            self._providers[name] = cls()
        if name == LOCAL and not model.startswith("local-stub"):
            logger.warning("No provider configured for model '%s'; using the local stub", model)
        return self._providers[name]

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
            purpose: What the call is for (e.g. "deliverable_review"). Logged only.
            max_retries: Number of attempts before giving up.
            **kwargs: temperature, max_tokens, timeout passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}

        Raises:
            RuntimeError: when every attempt failed.
        """
        model = model or self.default_model
        provider = self._get_provider(model)

        last_error = None
        for attempt in range(1, max_retries + 1):
            started = time.perf_counter()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning(
                    "LLM call attempt %d/%d failed: %s", attempt, max_retries, e,
                    extra={"purpose": purpose, "provider": provider.name},
                )
                if attempt < max_retries:
                    threading.Event().wait(min(2 ** (attempt - 1), self.backoff_cap))
                continue

            result["latency_ms"] = int((time.perf_counter() - started) * 1000)
            result["provider"] = provider.name
            logger.info(
                "LLM call ok purpose=%s provider=%s model=%s tokens=%d",
                purpose, provider.name, model,
                result["prompt_tokens"] + result["completion_tokens"],
                extra={"duration_ms": result["latency_ms"]},
            )
            return result

        raise RuntimeError(f"LLM call failed after {max_retries} attempt(s): {last_error}")
