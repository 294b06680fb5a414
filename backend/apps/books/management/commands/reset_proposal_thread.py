from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from apps.books.models import ChatThread, ThreadKind
from apps.books.services.pipeline import ConversationWorkflowService, TurnInFlight


class Command(BaseCommand):
    help = (
        "Reset proposal conversations: delete the message log, clear stored answers "
        "and progress, and post the welcome message again."
    )

    def add_arguments(self, parser):
        parser.add_argument("--thread-id", type=str, default="", help="Reset a single thread.")
        parser.add_argument("--project-id", type=str, default="", help="Reset every proposal thread of a project.")
        parser.add_argument(
            "--confirm",
            action="store_true",
            help="Required when resetting more than one thread.",
        )

    def handle(self, *args, **options):
        thread_id = str(options.get("thread_id", "")).strip()
        project_id = str(options.get("project_id", "")).strip()

        if thread_id:
            qs = ChatThread.objects.filter(id=thread_id)
        elif project_id:
            qs = ChatThread.objects.filter(project_id=project_id, kind=ThreadKind.PROPOSAL)
        else:
            raise CommandError("Provide --thread-id or --project-id.")

        threads = list(qs.select_related("project"))
        if not threads:
            self.stdout.write(self.style.WARNING("No matching threads found."))
            return
        if len(threads) > 1 and not options.get("confirm"):
            raise CommandError(
                f"{len(threads)} threads match. Re-run with --confirm to reset all of them."
            )

        service = ConversationWorkflowService()
        reset_count = 0
        for thread in threads:
            try:
                result = service.reset(thread)
            except TurnInFlight:
                self.stdout.write(self.style.WARNING(f"Skipped thread {thread.id}: a turn is in progress."))
                continue
            reset_count += 1
            self.stdout.write(
                f"Reset thread {thread.id} ({result['deleted_messages']} message(s) removed)."
            )
        self.stdout.write(self.style.SUCCESS(f"Reset {reset_count} thread(s)."))
