"""
Celery configuration for the Django application.

Celery runs the chat maintenance tasks (chat.tasks) on the schedule kept
by django-celery-beat, and carries offline-recipient notifications to the
notification worker (chat.bridge.CeleryNotificationSender sends them by
task name, so the worker may live in another code base).

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Run a maintenance pass by hand:
    from chat.tasks import soft_delete_expired_conversations

    soft_delete_expired_conversations.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
