"""
Tests for core/services.py.

This module tests:
- ServiceResult constructors and truthiness
- from_exception() keeps application error codes and details
- BaseService logger naming, atomic() rollback and validate_required()
"""

import pytest

from chat.models import Conversation
from chat.tests.factories import DirectConversationFactory
from core.exceptions import ValidationError
from core.services import BaseService, ServiceResult


class ExampleService(BaseService):
    pass


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result.success is True
        assert result.data == {"id": 1}
        assert result.error is None
        assert bool(result) is True

    def test_failure(self):
        result = ServiceResult.failure(
            "Conversation not found",
            error_code="NOT_FOUND",
            errors={"conversation_id": ["Unknown id."]},
        )

        assert result.success is False
        assert result.data is None
        assert result.error_code == "NOT_FOUND"
        assert result.errors == {"conversation_id": ["Unknown id."]}
        assert bool(result) is False

    def test_from_application_error(self):
        exc = ValidationError(
            "Field 'lat' is out of range",
            error_code="INVALID_PAYLOAD",
            details={"lat": ["Must be between -90 and 90."]},
        )

        result = ServiceResult.from_exception(exc)

        assert result.error == "Field 'lat' is out of range"
        assert result.error_code == "INVALID_PAYLOAD"
        assert result.errors == {"lat": ["Must be between -90 and 90."]}

    def test_from_plain_exception(self):
        result = ServiceResult.from_exception(KeyError("emoji"))

        assert result.success is False
        assert result.error_code == "KEYERROR"
        assert result.errors is None

    def test_explicit_code_wins(self):
        result = ServiceResult.from_exception(ValidationError("bad"), error_code="INVALID_EMOJI")

        assert result.error_code == "INVALID_EMOJI"


class TestBaseService:
    def test_logger_is_named_after_service(self):
        assert ExampleService.get_logger().name == f"{__name__}.ExampleService"

    @pytest.mark.django_db
    def test_atomic_rolls_back(self):
        with pytest.raises(RuntimeError):
            with ExampleService.atomic():
                DirectConversationFactory()
                raise RuntimeError("boom")

        assert Conversation.objects.count() == 0

    def test_validate_required_passes(self):
        assert ExampleService.validate_required(order_id="order-1", user=object()) is None

    def test_validate_required_collects_missing_fields(self):
        result = ExampleService.validate_required(order_id="  ", driver=None, title="Lunch")

        # A failure is falsy; callers test it with "is not None"
        assert result is not None
        assert not result
        assert result.error_code == "VALIDATION_ERROR"
        assert set(result.errors) == {"order_id", "driver"}


class TestExceptions:
    def test_defaults_and_str(self):
        exc = ValidationError("Text cannot be empty")

        assert exc.error_code == "VALIDATION_ERROR"
        assert exc.details == {}
        assert str(exc) == "[VALIDATION_ERROR] Text cannot be empty"
