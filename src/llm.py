"""LiteLLM-backed completion client used for task narratives."""

from __future__ import annotations

from typing import Any

from litellm import completion

from config import LlmConfig, settings


class LLMClient:
    """Synchronous chat-completion wrapper bound to one model configuration."""

    def __init__(self, config: LlmConfig | None = None, *, model: str | None = None) -> None:
        self._config = config or settings.llm
        self.model = _litellm_model_name(model or self._config.model)

    def complete_sync(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int | None = None,
        temperature: float = 0.3,
        **kwargs: Any,
    ) -> str | None:
        """Return the first choice's text, or None when the model sent nothing."""
        extra: dict[str, Any] = {}
        if self._config.base_url:
            extra["api_base"] = self._config.base_url
        if self._config.api_key:
            extra["api_key"] = self._config.api_key
        response = completion(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens or self._config.max_tokens,
            timeout=self._config.timeout,
            **extra,
            **kwargs,
        )
        if not response.choices:
            return None
        return response.choices[0].message.content


def _litellm_model_name(model: str) -> str:
    # LiteLLM takes Anthropic models without the provider prefix.
    if model.startswith("anthropic:"):
        return model[len("anthropic:") :]
    return model


__all__ = ["LLMClient"]
