from __future__ import annotations

from rest_framework import serializers

from apps.books.models import ChatThread
from apps.books.services.pipeline import turn_in_progress

from .models import AgentRun, RunMode, RunStatus


class AgentRunSerializer(serializers.ModelSerializer):
    class Meta:
        model = AgentRun
        fields = [
            "id",
            "trace_id",
            "thread",
            "mode",
            "status",
            "input_payload",
            "output_payload",
            "timings_json",
            "error_message",
            "created_at",
            "started_at",
            "finished_at",
        ]
        read_only_fields = fields


class AgentRunCreateSerializer(serializers.Serializer):
    thread_id = serializers.UUIDField(required=True)
    mode = serializers.ChoiceField(choices=RunMode.choices)
    inputs = serializers.JSONField(required=False, default=dict)

    def validate_thread_id(self, value):
        qs = ChatThread.objects.filter(id=value)
        request = self.context.get("request")
        if request:
            qs = qs.filter(project__owner=request.user)
        if not qs.exists():
            raise serializers.ValidationError("Invalid thread_id")
        return value

    def validate(self, attrs):
        mode = attrs["mode"]
        inputs = attrs.get("inputs", {}) or {}
        if mode == RunMode.TURN:
            if not isinstance(inputs, dict) or not str(inputs.get("message", "")).strip():
                raise serializers.ValidationError({"inputs.message": "message is required for turn mode"})
            in_flight = AgentRun.objects.filter(
                thread_id=attrs["thread_id"],
                mode=RunMode.TURN,
                status__in=[RunStatus.QUEUED, RunStatus.RUNNING],
            ).exists() or turn_in_progress(attrs["thread_id"])
            if in_flight:
                raise serializers.ValidationError({"thread_id": "a turn for this thread is already in progress"})
        return attrs
