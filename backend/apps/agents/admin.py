from django.contrib import admin

from .models import AgentRun


@admin.register(AgentRun)
class AgentRunAdmin(admin.ModelAdmin):
    list_display = ("id", "thread", "mode", "status", "created_at", "finished_at")
    list_filter = ("status", "mode")
    search_fields = ("thread__project__title", "error_message")
