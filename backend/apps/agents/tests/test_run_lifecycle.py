from __future__ import annotations

from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import caches
from django.test import TestCase
from rest_framework.authtoken.models import Token
from rest_framework.test import APITestCase

from apps.agents.models import AgentRun, RunStatus
from apps.agents.services.orchestration import AgentOrchestrator
from apps.agents.tasks import execute_agent_run
from apps.books.models import BookProject, ChatThread, ThreadKind
from apps.books.services.llm import GenerationServiceError
from apps.books.services.pipeline import turn_lock_key
from apps.books.services.planner import FALLBACK_QUESTION


class RunLifecycleTests(TestCase):
    def setUp(self):
        caches["turn_locks"].clear()
        caches["proposal_state"].clear()
        self.user = get_user_model().objects.create_user(username="runner", password="pass12345")
        self.project = BookProject.objects.create(owner=self.user, title="Lifecycle Book")
        self.thread = ChatThread.objects.create(project=self.project, kind=ThreadKind.PROPOSAL)

    @patch("apps.books.services.llm.LLMService.complete")
    def test_turn_run_posts_question(self, mock_complete):
        mock_complete.return_value = '{"decision":"ask","question":"想定読者は？"}'

        run = AgentRun(thread=self.thread, mode="turn", input_payload={"message": "時間術の本"})
        output = AgentOrchestrator().execute(run)

        self.assertEqual(output.get("status"), "success")
        self.assertEqual(output.get("outcome"), "asked")
        self.assertEqual(output.get("pending_question"), "想定読者は？")
        self.assertEqual(output.get("node"), "run_turn")
        self.assertIn("run_turn_ms", output["timings_ms"]["nodes"])
        self.assertIn("total_ms", output["timings_ms"])
        self.assertFalse(output.get("used_fallback"))

    @patch("apps.books.services.llm.LLMService.complete")
    def test_fallback_question_is_surfaced_in_run_output(self, mock_complete):
        mock_complete.return_value = "not json"

        run = AgentRun(thread=self.thread, mode="turn", input_payload={"message": "時間術の本"})
        output = AgentOrchestrator().execute(run)

        self.assertEqual(output.get("pending_question"), FALLBACK_QUESTION)
        self.assertTrue(output.get("used_fallback"))

    @patch("apps.books.services.llm.LLMService.complete")
    def test_execute_agent_run_marks_status_completed(self, mock_complete):
        mock_complete.return_value = '{"decision":"ask","question":"想定読者は？"}'

        run = AgentRun.objects.create(
            thread=self.thread,
            mode="turn",
            status=RunStatus.QUEUED,
            input_payload={"message": "時間術の本"},
        )
        result = execute_agent_run(str(run.id))

        run.refresh_from_db()
        self.assertEqual(result.get("status"), "ok")
        self.assertEqual(run.status, RunStatus.COMPLETED)
        self.assertEqual(run.output_payload.get("outcome"), "asked")
        self.assertEqual(run.output_payload.get("node"), "run_turn")
        self.assertIn("run_turn_ms", run.timings_json.get("nodes", {}))
        self.assertEqual(self.thread.messages.count(), 2)

    @patch("apps.books.services.llm.LLMService.complete")
    def test_generation_failure_marks_run_failed(self, mock_complete):
        mock_complete.side_effect = GenerationServiceError("upstream 500")

        run = AgentRun.objects.create(
            thread=self.thread,
            mode="turn",
            status=RunStatus.QUEUED,
            input_payload={"message": "時間術の本"},
        )
        result = execute_agent_run(str(run.id))

        run.refresh_from_db()
        self.assertEqual(result.get("status"), "error")
        self.assertEqual(run.status, RunStatus.FAILED)
        self.assertIn("upstream 500", run.error_message)
        self.assertEqual(run.output_payload, {"failed_node": "run_turn"})
        self.assertIn("run_turn_ms", run.timings_json["nodes"])

    def test_reset_run_restores_welcome(self):
        self.thread.messages.create(role="user", content="古い入力")

        run = AgentRun.objects.create(thread=self.thread, mode="reset", status=RunStatus.QUEUED)
        result = execute_agent_run(str(run.id))

        run.refresh_from_db()
        self.assertEqual(result.get("status"), "ok")
        self.assertEqual(run.output_payload.get("deleted_messages"), 1)
        self.assertEqual(self.thread.messages.count(), 1)

    def test_non_queued_run_is_not_executed(self):
        run = AgentRun.objects.create(thread=self.thread, mode="reset", status=RunStatus.COMPLETED)

        self.assertEqual(execute_agent_run(str(run.id)), {"status": "error", "error": "run_not_queued"})
        self.assertEqual(
            execute_agent_run("00000000-0000-0000-0000-000000000000"),
            {"status": "error", "error": "run_not_found"},
        )


class RunApiTests(APITestCase):
    def setUp(self):
        caches["turn_locks"].clear()
        caches["proposal_state"].clear()
        user_model = get_user_model()
        self.user_a = user_model.objects.create_user(username="owner_a", password="pass12345")
        self.user_b = user_model.objects.create_user(username="owner_b", password="pass12345")
        self.token_b = Token.objects.create(user=self.user_b)
        project_a = BookProject.objects.create(owner=self.user_a, title="A Book")
        self.thread_a = ChatThread.objects.create(project=project_a)
        self.project_b = BookProject.objects.create(owner=self.user_b, title="B Book")
        self.thread_b = ChatThread.objects.create(project=self.project_b)
        self.client.credentials(HTTP_AUTHORIZATION=f"Token {self.token_b.key}")

    def test_run_creation_rejects_foreign_thread(self):
        response = self.client.post(
            "/api/agents/runs/",
            {"thread_id": str(self.thread_a.id), "mode": "turn", "inputs": {"message": "hi"}},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("thread_id", response.data)

    def test_turn_run_requires_message(self):
        response = self.client.post(
            "/api/agents/runs/",
            {"thread_id": str(self.thread_b.id), "mode": "turn", "inputs": {}},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_second_turn_run_is_rejected_while_first_is_queued(self):
        AgentRun.objects.create(thread=self.thread_b, mode="turn", status=RunStatus.QUEUED, input_payload={"message": "a"})

        response = self.client.post(
            "/api/agents/runs/",
            {"thread_id": str(self.thread_b.id), "mode": "turn", "inputs": {"message": "b"}},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("thread_id", response.data)

    @patch("apps.books.services.llm.LLMService.complete")
    def test_sync_run_completes_inline(self, mock_complete):
        mock_complete.return_value = '{"decision":"ask","question":"想定読者は？"}'

        response = self.client.post(
            "/api/agents/runs/?sync=1",
            {"thread_id": str(self.thread_b.id), "mode": "turn", "inputs": {"message": "時間術の本"}},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], RunStatus.COMPLETED)
        listed = self.client.get(f"/api/agents/runs/?thread_id={self.thread_b.id}")
        self.assertEqual(len(listed.data), 1)

    def test_turn_run_is_rejected_while_send_holds_the_lock(self):
        caches["turn_locks"].add(turn_lock_key(self.thread_b.id), "1")

        response = self.client.post(
            "/api/agents/runs/",
            {"thread_id": str(self.thread_b.id), "mode": "turn", "inputs": {"message": "b"}},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("thread_id", response.data)
        self.assertFalse(AgentRun.objects.filter(thread=self.thread_b).exists())

    def test_reset_run_fails_while_turn_in_flight(self):
        caches["turn_locks"].add(turn_lock_key(self.thread_b.id), "1")

        response = self.client.post(
            "/api/agents/runs/?sync=1",
            {"thread_id": str(self.thread_b.id), "mode": "reset"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], RunStatus.FAILED)
        self.assertEqual(response.data["output_payload"], {"failed_node": "run_reset"})
