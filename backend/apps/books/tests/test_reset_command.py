from __future__ import annotations

from io import StringIO

from django.contrib.auth import get_user_model
from django.core.cache import caches
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from apps.books.models import BookProject, ChatThread, ProposalState, ThreadKind
from apps.books.services.pipeline import turn_lock_key
from apps.books.services.proposal_prompts import WELCOME_TEXT


class ResetProposalThreadCommandTests(TestCase):
    def setUp(self):
        caches["proposal_state"].clear()
        caches["turn_locks"].clear()
        user = get_user_model().objects.create_user(username="author", password="pw12345")
        self.project = BookProject.objects.create(owner=user, title="Draft")
        self.first = ChatThread.objects.create(project=self.project)
        self.second = ChatThread.objects.create(project=self.project)
        ChatThread.objects.create(project=self.project, kind=ThreadKind.CHAT)
        for thread in (self.first, self.second):
            thread.messages.create(role="user", content="本の案")
            ProposalState.objects.create(thread=thread, step_idx=2, answers={"q1": "a"})

    def test_single_thread_reset(self):
        out = StringIO()
        call_command("reset_proposal_thread", thread_id=str(self.first.id), stdout=out)

        self.assertIn("Reset 1 thread(s).", out.getvalue())
        self.assertEqual(list(self.first.messages.values_list("content", flat=True)), [WELCOME_TEXT])
        self.assertFalse(ProposalState.objects.filter(thread=self.first).exists())
        self.assertTrue(ProposalState.objects.filter(thread=self.second).exists())

    def test_project_reset_requires_confirm(self):
        with self.assertRaises(CommandError):
            call_command("reset_proposal_thread", project_id=str(self.project.id), stdout=StringIO())

        out = StringIO()
        call_command("reset_proposal_thread", project_id=str(self.project.id), confirm=True, stdout=out)
        self.assertIn("Reset 2 thread(s).", out.getvalue())
        self.assertEqual(ProposalState.objects.count(), 0)

    def test_missing_target_is_an_error(self):
        with self.assertRaises(CommandError):
            call_command("reset_proposal_thread", stdout=StringIO())

    def test_thread_with_turn_in_flight_is_skipped(self):
        caches["turn_locks"].add(turn_lock_key(self.second.id), "1")
        out = StringIO()

        call_command("reset_proposal_thread", project_id=str(self.project.id), confirm=True, stdout=out)

        self.assertIn(f"Skipped thread {self.second.id}", out.getvalue())
        self.assertIn("Reset 1 thread(s).", out.getvalue())
        self.assertTrue(ProposalState.objects.filter(thread=self.second).exists())
        self.assertFalse(ProposalState.objects.filter(thread=self.first).exists())
