from __future__ import annotations

from rest_framework import serializers

from .models import BookProject, ChatMessage, ChatThread


class ChatMessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChatMessage
        fields = ["id", "thread", "role", "content", "created_at"]
        read_only_fields = fields


class ChatThreadSerializer(serializers.ModelSerializer):
    def validate_project(self, value):
        request = self.context.get("request")
        if request and value.owner_id != request.user.id:
            raise serializers.ValidationError("Invalid project")
        return value

    class Meta:
        model = ChatThread
        fields = [
            "id",
            "project",
            "kind",
            "title",
            "context_text",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]


class BookProjectSerializer(serializers.ModelSerializer):
    threads = ChatThreadSerializer(many=True, read_only=True)
    owner = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = BookProject
        fields = [
            "id",
            "owner",
            "title",
            "assistant_name",
            "threads",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
