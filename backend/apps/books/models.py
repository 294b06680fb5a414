from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models


def _default_assistant_name() -> str:
    return getattr(settings, "ASSISTANT_DEFAULT_NAME", "Life AI")


class ThreadKind(models.TextChoices):
    PROPOSAL = "proposal", "Proposal"
    CHAT = "chat", "Chat"


class MessageRole(models.TextChoices):
    USER = "user", "User"
    ASSISTANT = "assistant", "Assistant"
    SYSTEM = "system", "System"


class BookProject(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="book_projects",
    )
    title = models.CharField(max_length=160)
    assistant_name = models.CharField(max_length=80, blank=True, default=_default_assistant_name)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.title} ({self.id})"


class ChatThread(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    project = models.ForeignKey(BookProject, on_delete=models.CASCADE, related_name="threads")
    kind = models.CharField(max_length=16, choices=ThreadKind.choices, default=ThreadKind.PROPOSAL)
    title = models.CharField(max_length=120, default="メインチャット")
    context_text = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["project", "created_at"]

    def __str__(self) -> str:
        return f"{self.project.title}: {self.title} [{self.kind}]"


class ChatMessage(models.Model):
    thread = models.ForeignKey(ChatThread, on_delete=models.CASCADE, related_name="messages")
    role = models.CharField(max_length=16, choices=MessageRole.choices)
    content = models.TextField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [models.Index(fields=["thread", "created_at"], name="books_msg_thread_created_idx")]

    def __str__(self) -> str:
        return f"{self.role}: {self.content[:40]}"


class ProposalState(models.Model):
    thread = models.OneToOneField(
        ChatThread,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="proposal_state",
    )
    step_idx = models.PositiveIntegerField(default=0)
    answers = models.JSONField(default=dict, blank=True)
    summarized_at = models.DateTimeField(null=True, blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Proposal state for {self.thread_id} (step {self.step_idx})"
