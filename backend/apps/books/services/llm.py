from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.conf import settings
from openai import OpenAI

logger = logging.getLogger(__name__)

_CHAT_BASE_SYSTEM = "あなたは書籍出版アシスタントAIです。事実を作らず、簡潔に、箇条書きを優先して回答。"


class GenerationServiceError(RuntimeError):
    """Raised when the text-generation backend cannot produce a reply."""


class LLMService:
    """
    Thin adapter over the OpenAI Chat Completions API.

    A request is an ordered list of role-tagged turns; the reply is the text of
    the first choice. Transport and configuration failures are raised as
    GenerationServiceError and never retried here, so the caller decides what
    the user sees.
    """

    def __init__(self) -> None:
        self.model = settings.OPENAI_MODEL
        self._client: Optional[OpenAI] = None
        if getattr(settings, "OPENAI_API_KEY", ""):
            try:
                self._client = OpenAI(api_key=settings.OPENAI_API_KEY)
            except Exception:
                logger.warning("Failed to initialise OpenAI client", exc_info=True)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def complete(self, messages: List[Dict[str, str]], model: str | None = None) -> str:
        if not self._client:
            raise GenerationServiceError("OpenAI client is not configured")

        model_name = (model or self.model).strip() or self.model
        try:
            response = self._client.chat.completions.create(
                model=model_name,
                messages=messages,
            )
        except Exception as exc:
            logger.warning("LLM completion failed (model=%s)", model_name, exc_info=True)
            raise GenerationServiceError(str(exc)[:500] or "openai_error") from exc

        if not getattr(response, "choices", None):
            raise GenerationServiceError("Generation service returned no choices")
        return str(response.choices[0].message.content or "")

    def complete_system(self, system_prompt: str, model: str | None = None) -> str:
        """Single-system-message request used by planning and synthesis."""
        return self.complete([{"role": "system", "content": system_prompt}], model=model)

    def chat(
        self,
        history: List[Dict[str, str]],
        system: str | None = None,
        prev: str | None = None,
        window: int | None = None,
    ) -> str:
        """Free-form chat turn over the most recent history window."""
        limit = window if window is not None else settings.CHAT_HISTORY_WINDOW
        messages = [{"role": "system", "content": _chat_system_prompt(system, prev)}]
        messages.extend(_history_turns(history)[-limit:] if limit > 0 else [])
        return self.complete(messages)


def _chat_system_prompt(system: str | None, prev: str | None) -> str:
    base = system or _CHAT_BASE_SYSTEM
    if prev and prev.strip():
        return (
            f"{base}\n\n前セクションの確定内容:\n---\n{prev}\n---\n"
            "この内容と整合し、矛盾しない提案/本文を出してください。"
        )
    return base


def _history_turns(history: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    turns: List[Dict[str, str]] = []
    for turn in history or []:
        if not isinstance(turn, dict):
            continue
        role = str(turn.get("role", "")).strip().lower()
        content = str(turn.get("content", ""))
        if role in {"user", "assistant", "system"} and content.strip():
            turns.append({"role": role, "content": content})
    return turns
