"""
Tests for core/models.py and core/model_mixins.py.

This module tests:
- UUID primary keys are generated on create
- soft_delete() sets is_deleted and deleted_at without removing the row
- extra_fields are written in the same save
- restore() clears the soft delete state
"""

import uuid

import pytest
from django.utils import timezone
from freezegun import freeze_time

from chat.models import Conversation, Message
from chat.tests.factories import DirectConversationFactory, MessageFactory


@pytest.fixture
def conversation(db):
    return DirectConversationFactory()


class TestUUIDPrimaryKeyMixin:
    def test_id_is_uuid(self, conversation):
        assert isinstance(conversation.id, uuid.UUID)

    def test_ids_are_unique(self, conversation):
        other = DirectConversationFactory()

        assert other.id != conversation.id


class TestBaseModel:
    def test_timestamps_are_set(self, conversation):
        assert conversation.created_at is not None
        assert conversation.updated_at >= conversation.created_at


class TestSoftDelete:
    @freeze_time("2026-03-01 12:00:00")
    def test_soft_delete_keeps_row(self, conversation):
        conversation.soft_delete()

        stored = Conversation.objects.get(pk=conversation.pk)
        assert stored.is_deleted is True
        assert stored.deleted_at == timezone.now()

    def test_extra_fields_are_saved(self, conversation):
        message = MessageFactory(conversation=conversation)
        message.deleted_by = conversation.created_by
        message.delete_type = "sender"

        message.soft_delete(extra_fields=("deleted_by", "delete_type"))

        stored = Message.objects.get(pk=message.pk)
        assert stored.is_deleted is True
        assert stored.deleted_by_id == conversation.created_by_id
        assert stored.delete_type == "sender"

    def test_restore(self, conversation):
        conversation.soft_delete()

        conversation.restore()

        stored = Conversation.objects.get(pk=conversation.pk)
        assert stored.is_deleted is False
        assert stored.deleted_at is None
