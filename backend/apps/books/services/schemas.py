from __future__ import annotations

from typing import Dict, List, Literal, Optional, TypedDict, Union

AnswerMap = Dict[str, str]


class QAPair(TypedDict):
    question: str
    answer: str


class AskDecision(TypedDict):
    decision: Literal["ask"]
    question: str
    followups: List[str]
    used_fallback: bool


class SummaryDecision(TypedDict):
    decision: Literal["summary"]
    reason: str
    forced: bool


PlannerDecision = Union[AskDecision, SummaryDecision]


class PlannerOutcome(TypedDict):
    status: Literal["asked", "summarized"]
    decision: PlannerDecision
    message_id: int
    pending_question: Optional[str]


class MessageObject(TypedDict):
    id: int
    role: str
    content: str
    created_at: str


class TurnPayload(TypedDict, total=False):
    status: str
    outcome: str
    asked_count: int
    pending_question: Optional[str]
    messages: List[MessageObject]
    used_fallback: bool
    persisted: bool
