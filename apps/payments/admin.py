from django.contrib import admin

from .models import WebhookEvent


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('event_id', 'event_type', 'provider', 'is_processed', 'created_at')
    list_filter = ('is_processed', 'event_type', 'created_at')
    search_fields = ('event_id',)
    readonly_fields = ('payload',)
