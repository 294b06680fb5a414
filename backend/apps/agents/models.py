from __future__ import annotations

import uuid

from django.db import models

from apps.books.models import ChatThread


class RunStatus(models.TextChoices):
    QUEUED = "queued", "Queued"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class RunMode(models.TextChoices):
    TURN = "turn", "Turn"
    RESET = "reset", "Reset"


class AgentRun(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    trace_id = models.UUIDField(default=uuid.uuid4, editable=False, db_index=True)
    thread = models.ForeignKey(ChatThread, on_delete=models.CASCADE, related_name="runs")

    mode = models.CharField(max_length=32, choices=RunMode.choices)
    status = models.CharField(max_length=16, choices=RunStatus.choices, default=RunStatus.QUEUED)

    input_payload = models.JSONField(default=dict, blank=True)
    output_payload = models.JSONField(default=dict, blank=True)
    timings_json = models.JSONField(default=dict, blank=True)
    error_message = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="agents_run_status_created_idx"),
            models.Index(fields=["thread", "created_at"], name="agents_run_thread_created_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.mode} run for thread {self.thread_id} ({self.status})"
