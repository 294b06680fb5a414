from django.contrib import admin

from .models import BookProject, ChatMessage, ChatThread, ProposalState


@admin.register(BookProject)
class BookProjectAdmin(admin.ModelAdmin):
    list_display = ("title", "owner", "assistant_name", "created_at")
    search_fields = ("title", "assistant_name")


@admin.register(ChatThread)
class ChatThreadAdmin(admin.ModelAdmin):
    list_display = ("project", "title", "kind", "created_at")
    search_fields = ("title", "project__title")
    list_filter = ("kind",)


@admin.register(ChatMessage)
class ChatMessageAdmin(admin.ModelAdmin):
    list_display = ("thread", "role", "created_at")
    search_fields = ("content", "thread__project__title")
    list_filter = ("role",)


@admin.register(ProposalState)
class ProposalStateAdmin(admin.ModelAdmin):
    list_display = ("thread", "step_idx", "summarized_at", "updated_at")
    search_fields = ("thread__project__title",)
