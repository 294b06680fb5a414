from __future__ import annotations

from typing import Dict, List, Optional

from ..models import ChatMessage, ChatThread, MessageRole
from .proposal_prompts import parse_question_message
from .schemas import MessageObject


def append_message(thread: ChatThread, role: str, content: str) -> ChatMessage:
    return ChatMessage.objects.create(thread=thread, role=role, content=content)


def last_assistant_message(thread: ChatThread) -> Optional[ChatMessage]:
    return (
        ChatMessage.objects.filter(thread=thread, role=MessageRole.ASSISTANT)
        .order_by("-created_at", "-id")
        .first()
    )


def pending_question(thread: ChatThread) -> Optional[str]:
    """Re-derive the open question from the log: the last assistant message, if it is a question."""
    message = last_assistant_message(thread)
    return parse_question_message(message.content) if message else None


def history(thread: ChatThread, limit: int | None = None) -> List[Dict[str, str]]:
    qs = ChatMessage.objects.filter(
        thread=thread,
        role__in=[MessageRole.USER, MessageRole.ASSISTANT],
    ).order_by("-created_at", "-id")
    if limit is not None:
        qs = qs[: max(0, int(limit))]
    rows = list(qs)
    rows.reverse()
    return [{"role": m.role, "content": m.content} for m in rows]


def has_assistant_text(thread: ChatThread, content: str) -> bool:
    target = content.strip()
    return any(
        text.strip() == target
        for text in ChatMessage.objects.filter(thread=thread, role=MessageRole.ASSISTANT).values_list("content", flat=True)
    )


def clear_messages(thread: ChatThread) -> int:
    deleted, _ = ChatMessage.objects.filter(thread=thread).delete()
    return deleted


def message_object(message: ChatMessage) -> MessageObject:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at.isoformat() if message.created_at else "",
    }
