from __future__ import annotations

import json
import logging
import re
from typing import Any, List

from django.conf import settings

from ..models import ChatThread, MessageRole
from .llm import GenerationServiceError, LLMService
from .proposal_prompts import (
    DEFAULT_MAX_ROUNDS,
    MAX_FOLLOWUPS,
    build_planner_prompt,
    build_question_message,
    build_summary_prompt,
)
from .schemas import AnswerMap, AskDecision, PlannerDecision, PlannerOutcome, SummaryDecision
from .thread_log import append_message

logger = logging.getLogger(__name__)

FALLBACK_QUESTION = "この企画の想定読者をもう少し具体化するためのポイントは？"

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)


def strip_fences(text: str) -> str:
    """Strip a markdown code fence from model output if present."""
    match = _FENCE_RE.search(text or "")
    return match.group(1).strip() if match else (text or "").strip()


def fallback_decision() -> AskDecision:
    return {"decision": "ask", "question": FALLBACK_QUESTION, "followups": [], "used_fallback": True}


def parse_planner_reply(raw: str | None) -> PlannerDecision:
    """
    Read the planner's structured reply into one of the two decision variants.

    Anything that is not a usable decision object becomes an ask with the
    fixed fallback question, so a bad reply never stalls the conversation.
    """
    try:
        obj = json.loads(strip_fences(raw or ""))
    except ValueError:
        logger.info("Planner reply was not valid JSON; using fallback question")
        return fallback_decision()
    if not isinstance(obj, dict):
        return fallback_decision()

    decision = str(obj.get("decision", "")).strip().lower()
    if decision == "summary":
        reason = obj.get("reason")
        return {"decision": "summary", "reason": str(reason).strip() if reason else "", "forced": False}
    if decision != "ask":
        return fallback_decision()

    question = obj.get("question")
    if not isinstance(question, str) or not question.strip():
        return fallback_decision()
    return {
        "decision": "ask",
        "question": question.strip(),
        "followups": _clean_followups(obj.get("followups")),
        "used_fallback": False,
    }


def resolve_decision(decision: PlannerDecision, asked_count: int, max_rounds: int) -> PlannerDecision:
    """Apply the round cap; once reached, the flow always moves to synthesis."""
    if decision["decision"] == "summary":
        return decision
    if int(asked_count) >= int(max_rounds):
        forced: SummaryDecision = {"decision": "summary", "reason": "round cap reached", "forced": True}
        return forced
    return decision


class ProposalPlanner:
    def __init__(self, llm: LLMService | None = None, max_rounds: int | None = None) -> None:
        self.llm = llm or LLMService()
        if max_rounds is None:
            max_rounds = getattr(settings, "PROPOSAL_MAX_ROUNDS", DEFAULT_MAX_ROUNDS)
        self.max_rounds = int(max_rounds)

    def decide(self, agent_name: str, answers: AnswerMap, asked_count: int) -> PlannerDecision:
        prompt = build_planner_prompt(agent_name, answers, asked_count, self.max_rounds)
        raw = self.llm.complete_system(prompt)
        decision = resolve_decision(parse_planner_reply(raw), asked_count, self.max_rounds)
        logger.info(
            "Planner decision=%s asked_count=%d max_rounds=%d",
            decision["decision"],
            asked_count,
            self.max_rounds,
        )
        return decision

    def summarize(self, agent_name: str, answers: AnswerMap) -> str:
        draft = self.llm.complete_system(build_summary_prompt(agent_name, answers))
        if not draft.strip():
            raise GenerationServiceError("Draft generation returned empty text")
        return draft

    def run(self, thread: ChatThread, agent_name: str, answers: AnswerMap, asked_count: int) -> PlannerOutcome:
        decision = self.decide(agent_name, answers, asked_count)

        if decision["decision"] == "summary":
            draft = self.summarize(agent_name, answers)
            message = append_message(thread, MessageRole.ASSISTANT, draft)
            return {
                "status": "summarized",
                "decision": decision,
                "message_id": message.id,
                "pending_question": None,
            }

        content = build_question_message(decision["question"], decision["followups"])
        message = append_message(thread, MessageRole.ASSISTANT, content)
        return {
            "status": "asked",
            "decision": decision,
            "message_id": message.id,
            "pending_question": decision["question"],
        }


def _clean_followups(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()][:MAX_FOLLOWUPS]
