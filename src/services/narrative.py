"""Narrative summaries attached to synthesized tasks."""

from __future__ import annotations

import json
import logging
from typing import Protocol

from agenda.signals import Signal
from llm import LLMClient

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are an accounting operations assistant. Summarize the signal below "
    "for an accountant in two sentences: what needs attention and why it is "
    "prioritized the way it is. Do not invent figures."
)


class NarrativeSummarizer(Protocol):
    """Contract for producing a short narrative for a signal."""

    def summarize(self, signal: Signal) -> str | None:
        """Return a summary, or None when no narrative is available."""


class TemplateNarrative:
    """Deterministic summary built from the signal type and priority."""

    def summarize(self, signal: Signal) -> str:
        return (
            f"Automated task generated from {signal.signal_type} signal. "
            f"Priority: {signal.priority}."
        )


class LlmNarrativeSummarizer:
    """Summarize signals through LiteLLM, degrading to the template on failure."""

    def __init__(
        self,
        client: LLMClient | None = None,
        *,
        max_tokens: int | None = None,
        fallback: NarrativeSummarizer | None = None,
    ) -> None:
        self._client = client or LLMClient()
        self._max_tokens = max_tokens
        self._fallback = fallback or TemplateNarrative()

    def summarize(self, signal: Signal) -> str | None:
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": _render_signal(signal)},
        ]
        try:
            text = self._client.complete_sync(messages, max_tokens=self._max_tokens)
        except Exception:
            logger.exception("Narrative summary failed: signal_type=%s", signal.signal_type)
            return self._fallback.summarize(signal)
        if not text or not text.strip():
            return self._fallback.summarize(signal)
        return text.strip()


def _render_signal(signal: Signal) -> str:
    """Render a signal as a compact prompt payload."""
    payload = {
        "type": signal.signal_type,
        "priority": signal.priority,
        "count": signal.count,
        "evidence": signal.evidence,
    }
    return json.dumps(payload, default=str, sort_keys=True)
