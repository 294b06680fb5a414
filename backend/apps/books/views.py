from __future__ import annotations

import logging

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.agents.models import AgentRun, RunMode, RunStatus

from .models import BookProject, ChatThread, ThreadKind
from .serializers import BookProjectSerializer, ChatMessageSerializer, ChatThreadSerializer
from .services.llm import GenerationServiceError
from .services.pipeline import ConversationWorkflowService, TurnInFlight, TurnRejected

logger = logging.getLogger(__name__)

GENERATION_FAILED_DETAIL = "AI応答の取得に失敗しました"


class BookProjectViewSet(viewsets.ModelViewSet):
    queryset = BookProject.objects.none()
    serializer_class = BookProjectSerializer

    def get_queryset(self):
        return (
            BookProject.objects.filter(owner=self.request.user)
            .prefetch_related("threads")
            .order_by("-created_at")
        )

    def perform_create(self, serializer):
        serializer.save(owner=self.request.user)


class ChatThreadViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = ChatThread.objects.none()
    serializer_class = ChatThreadSerializer

    def get_queryset(self):
        qs = ChatThread.objects.select_related("project").filter(project__owner=self.request.user)
        project_id = self.request.query_params.get("project_id")
        if project_id:
            qs = qs.filter(project_id=project_id)
        return qs

    def perform_create(self, serializer):
        thread = serializer.save()
        if thread.kind == ThreadKind.PROPOSAL:
            ConversationWorkflowService().ensure_welcome(thread)

    @action(detail=True, methods=["get"], url_path="messages")
    def messages(self, request, pk=None):
        thread = self.get_object()
        serializer = ChatMessageSerializer(thread.messages.all(), many=True)
        return Response(serializer.data)

    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        thread = self.get_object()
        message = str(request.data.get("message", "")).strip()
        if not message:
            return Response({"detail": "message is required"}, status=status.HTTP_400_BAD_REQUEST)

        if _turn_run_pending(thread):
            return Response({"detail": "a turn run for this thread is queued or running"}, status=status.HTTP_409_CONFLICT)

        try:
            payload = ConversationWorkflowService().handle_turn(thread, message)
        except TurnInFlight as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
        except TurnRejected as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except GenerationServiceError:
            logger.warning("Turn failed for thread %s", thread.id, exc_info=True)
            return Response({"detail": GENERATION_FAILED_DETAIL}, status=status.HTTP_502_BAD_GATEWAY)
        return Response(payload)

    @action(detail=True, methods=["post"], url_path="reset")
    def reset(self, request, pk=None):
        thread = self.get_object()
        try:
            result = ConversationWorkflowService().reset(thread)
        except TurnInFlight as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
        return Response(result)

    @action(detail=True, methods=["get"], url_path="proposal-state")
    def proposal_state(self, request, pk=None):
        thread = self.get_object()
        if thread.kind != ThreadKind.PROPOSAL:
            return Response({"detail": "thread is not a proposal thread"}, status=status.HTTP_400_BAD_REQUEST)
        return Response(ConversationWorkflowService().proposal_snapshot(thread))


def _turn_run_pending(thread: ChatThread) -> bool:
    return AgentRun.objects.filter(
        thread=thread,
        mode=RunMode.TURN,
        status__in=[RunStatus.QUEUED, RunStatus.RUNNING],
    ).exists()
