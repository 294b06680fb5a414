from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

from django.conf import settings
from django.core.cache import caches

from ..models import ChatMessage, ChatThread, MessageRole, ThreadKind
from . import thread_log
from .answer_store import ProposalStateStore
from .llm import GenerationServiceError, LLMService
from .planner import ProposalPlanner
from .proposal_prompts import (
    PENDING_QUESTION_PLACEHOLDER,
    SEED_ANSWER_KEY,
    WELCOME_TEXT,
    answer_key,
    encode_answer,
)
from .schemas import TurnPayload

logger = logging.getLogger(__name__)


class TurnRejected(ValueError):
    """Input that cannot start a turn (empty message)."""


class TurnInFlight(TurnRejected):
    """A previous turn for the same thread has not finished yet."""


def turn_lock_key(thread_id: Any) -> str:
    return f"proposalTurn:{thread_id}"


@contextmanager
def thread_turn_lock(thread_id: Any) -> Iterator[None]:
    """Hold the per-thread lock shared by every worker; TurnInFlight if another holder has it."""
    lock = caches[settings.TURN_LOCK_CACHE_ALIAS]
    key = turn_lock_key(thread_id)
    if not lock.add(key, "1", timeout=settings.PROPOSAL_TURN_LOCK_SECONDS):
        raise TurnInFlight("a turn for this thread is already in progress")
    try:
        yield
    finally:
        lock.delete(key)


def turn_in_progress(thread_id: Any) -> bool:
    return caches[settings.TURN_LOCK_CACHE_ALIAS].get(turn_lock_key(thread_id)) is not None


class ConversationWorkflowService:
    """
    Runs one user turn against a thread.

    Proposal threads move AwaitingSeed -> Questioning -> Summarized; the first
    input is the seed pitch, every later input answers the open question. Chat
    threads, and proposal threads that already produced a draft, get a
    free-form reply over the recent history window.
    """

    def __init__(
        self,
        llm: LLMService | None = None,
        store: ProposalStateStore | None = None,
        planner: ProposalPlanner | None = None,
    ) -> None:
        self.llm = llm or LLMService()
        self.store = store or ProposalStateStore()
        self.planner = planner or ProposalPlanner(self.llm)

    def execute_mode(self, thread: ChatThread, mode: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        if mode == "turn":
            return dict(self.handle_turn(thread, str((inputs or {}).get("message", ""))))
        if mode == "reset":
            return self.reset(thread)
        raise ValueError("mode must be one of: turn | reset")

    def handle_turn(self, thread: ChatThread, message: str) -> TurnPayload:
        content = str(message or "").strip()
        if not content:
            raise TurnRejected("message is required")

        with thread_turn_lock(thread.id):
            return self._run_turn(thread, content)

    def reset(self, thread: ChatThread) -> Dict[str, Any]:
        with thread_turn_lock(thread.id):
            deleted = thread_log.clear_messages(thread)
            self.store.clear(thread.id)
            welcome = self.ensure_welcome(thread)
        logger.info("Reset thread %s (%d messages removed)", thread.id, deleted)
        return {
            "status": "success",
            "deleted_messages": deleted,
            "messages": [thread_log.message_object(welcome)] if welcome else [],
        }

    def ensure_welcome(self, thread: ChatThread) -> ChatMessage | None:
        if thread.kind != ThreadKind.PROPOSAL:
            return None
        if thread_log.has_assistant_text(thread, WELCOME_TEXT):
            return None
        return thread_log.append_message(thread, MessageRole.ASSISTANT, WELCOME_TEXT)

    def proposal_snapshot(self, thread: ChatThread) -> Dict[str, Any]:
        count, answers = self.store.get(thread.id)
        summarized = self.store.is_summarized(thread.id)
        if summarized:
            phase = "summarized"
        elif answers.get(SEED_ANSWER_KEY):
            phase = "questioning"
        else:
            phase = "awaiting_seed"
        draft = ""
        if summarized:
            last = thread_log.last_assistant_message(thread)
            draft = last.content if last else ""
        return {
            "thread_id": str(thread.id),
            "asked_count": count,
            "max_rounds": self.planner.max_rounds,
            "answers": answers,
            "phase": phase,
            "pending_question": None if summarized else thread_log.pending_question(thread),
            "draft": draft,
        }

    def _run_turn(self, thread: ChatThread, content: str) -> TurnPayload:
        pending = thread_log.pending_question(thread)
        user_message = thread_log.append_message(thread, MessageRole.USER, content)
        posted: List[ChatMessage] = [user_message]

        if thread.kind != ThreadKind.PROPOSAL or self.store.is_summarized(thread.id):
            reply = self._chat_reply(thread)
            posted.append(reply)
            count, _ = self.store.get(thread.id) if thread.kind == ThreadKind.PROPOSAL else (0, {})
            return self._payload("chatted", count, None, posted)

        count, answers = self.store.get(thread.id)
        next_answers = dict(answers)
        if pending is None and not answers.get(SEED_ANSWER_KEY):
            next_answers[SEED_ANSWER_KEY] = content
            next_count = count
        else:
            next_count = count + 1
            next_answers[answer_key(next_count)] = encode_answer(pending or PENDING_QUESTION_PLACEHOLDER, content)
        persisted = self.store.put(thread.id, next_count, next_answers)

        outcome = self.planner.run(thread, self._agent_name(thread), next_answers, next_count)
        posted.append(ChatMessage.objects.get(id=outcome["message_id"]))
        if outcome["status"] == "summarized":
            self.store.mark_summarized(thread.id)

        payload = self._payload(outcome["status"], next_count, outcome["pending_question"], posted)
        payload["used_fallback"] = bool(outcome["decision"].get("used_fallback"))
        payload["persisted"] = persisted
        return payload

    def _chat_reply(self, thread: ChatThread) -> ChatMessage:
        system = (
            f"あなたは編集者AIです。ユーザーがあなたに付けた呼び名は「{self._agent_name(thread)}」。"
            "必要に応じてその名で最小限に名乗って構いません。"
        )
        text = self.llm.chat(
            thread_log.history(thread, limit=settings.CHAT_HISTORY_WINDOW),
            system=system,
            prev=thread.context_text,
        )
        if not text.strip():
            raise GenerationServiceError("Chat reply was empty")
        return thread_log.append_message(thread, MessageRole.ASSISTANT, text)

    def _agent_name(self, thread: ChatThread) -> str:
        name = str(getattr(thread.project, "assistant_name", "") or "").strip()
        return name or settings.ASSISTANT_DEFAULT_NAME

    def _payload(
        self,
        outcome: str,
        asked_count: int,
        pending_question: str | None,
        posted: List[ChatMessage],
    ) -> TurnPayload:
        return {
            "status": "success",
            "outcome": outcome,
            "asked_count": asked_count,
            "pending_question": pending_question,
            "messages": [thread_log.message_object(m) for m in posted],
        }
