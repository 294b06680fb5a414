from __future__ import annotations

from rest_framework import mixins, status, viewsets
from rest_framework.response import Response

from .models import AgentRun, RunStatus
from .serializers import AgentRunCreateSerializer, AgentRunSerializer
from .tasks import execute_agent_run, run_agent


class AgentRunViewSet(mixins.CreateModelMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = AgentRun.objects.none()
    serializer_class = AgentRunSerializer

    def get_queryset(self):
        qs = AgentRun.objects.filter(thread__project__owner=self.request.user).select_related("thread")
        thread_id = self.request.query_params.get("thread_id")
        if thread_id:
            qs = qs.filter(thread_id=thread_id)
        return qs

    def create(self, request, *args, **kwargs):
        create_serializer = AgentRunCreateSerializer(data=request.data, context={"request": request})
        create_serializer.is_valid(raise_exception=True)
        validated = create_serializer.validated_data

        run = AgentRun.objects.create(
            thread_id=validated["thread_id"],
            mode=validated["mode"],
            status=RunStatus.QUEUED,
            input_payload=validated.get("inputs", {}),
        )

        sync = str(request.query_params.get("sync", "0")).lower() in {"1", "true", "yes"}
        if sync:
            run_agent(run)
        else:
            execute_agent_run.delay(str(run.id))

        run.refresh_from_db()
        return Response(AgentRunSerializer(run).data, status=status.HTTP_201_CREATED)
