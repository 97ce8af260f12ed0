"""
Tests for message payload parsing.

Each message type has one payload shape; parse_payload() picks it by type
and raises core.exceptions.ValidationError with a specific error code.
"""

import pytest

from core.exceptions import ValidationError

from chat.constants import MESSAGE_CONFIG
from chat.models import MessageType
from chat.payloads import (
    PAYLOAD_TYPES,
    DeliveryPayload,
    LocationPayload,
    MediaPayload,
    media_type_for_mime,
    parse_payload,
    preview_content,
)


class TestTextPayload:
    def test_trims_whitespace(self):
        payload = parse_payload(MessageType.TEXT, {"text": "  hello  "})

        assert payload.to_content() == {"text": "hello"}

    def test_accepts_bare_string(self):
        assert parse_payload(MessageType.TEXT, "hi").text == "hi"

    def test_whitespace_only_is_empty(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(MessageType.TEXT, {"text": "   "})

        assert exc_info.value.error_code == "EMPTY_CONTENT"

    def test_max_length_is_accepted(self):
        text = "a" * MESSAGE_CONFIG.MAX_TEXT_LENGTH

        assert parse_payload(MessageType.TEXT, text).text == text

    def test_over_max_length_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(MessageType.TEXT, "a" * (MESSAGE_CONFIG.MAX_TEXT_LENGTH + 1))

        assert exc_info.value.error_code == "CONTENT_TOO_LONG"


class TestStructuredPayloads:
    def test_media_descriptor_is_normalized(self):
        payload = parse_payload(
            MessageType.FILE,
            {"url": "https://cdn.example.com/x/menu.pdf", "size": "512", "mimeType": "application/pdf"},
        )

        assert isinstance(payload, MediaPayload)
        assert payload.to_content() == {
            "url": "https://cdn.example.com/x/menu.pdf",
            "filename": "menu.pdf",
            "size": 512,
            "mime_type": "application/pdf",
        }

    def test_media_without_url_is_invalid(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(MessageType.IMAGE, {"filename": "a.jpg"})

        assert exc_info.value.error_code == "INVALID_PAYLOAD"

    def test_location_range_is_checked(self):
        with pytest.raises(ValidationError) as exc_info:
            LocationPayload.parse({"lat": 91, "lng": 0})

        assert exc_info.value.error_code == "INVALID_PAYLOAD"
        assert "lat" in exc_info.value.details

    def test_delivery_location_is_validated_as_location(self):
        payload = DeliveryPayload.parse(
            {"orderId": "o-1", "status": "picked_up", "location": {"lat": "10.5", "lng": "106.7"}}
        )

        assert payload.order_id == "o-1"
        assert payload.location == {"lat": 10.5, "lng": 106.7}

    def test_contact_requires_name(self):
        with pytest.raises(ValidationError):
            parse_payload(MessageType.CONTACT, {"phone": "+123"})

    def test_non_object_content_is_invalid(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload(MessageType.STICKER, "sticker-1")

        assert exc_info.value.error_code == "INVALID_PAYLOAD"

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload("hologram", {})

        assert exc_info.value.error_code == "INVALID_MESSAGE_TYPE"


class TestPreviews:
    def test_every_message_type_has_a_payload_shape(self):
        assert set(PAYLOAD_TYPES) == set(MessageType.values)

    @pytest.mark.parametrize(
        "message_type,content,expected",
        [
            (MessageType.LOCATION, {"lat": 1, "lng": 2, "address": "Main St"}, "[location] Main St"),
            (MessageType.CONTACT, {"name": "Bob"}, "[contact] Bob"),
            (MessageType.ORDER_UPDATE, {"order_id": "42", "status": "ready"}, "Order 42: ready"),
            (MessageType.SYSTEM, {"action": "participant_added", "data": {}}, "Participant added"),
        ],
    )
    def test_preview_content(self, message_type, content, expected):
        assert preview_content(message_type, content) == expected

    def test_unparseable_stored_content_previews_empty(self):
        assert preview_content(MessageType.CONTACT, {}) == ""

    @pytest.mark.parametrize(
        "mime,expected",
        [
            ("image/png", "image"),
            ("video/mp4", "video"),
            ("audio/ogg", "audio"),
            ("application/pdf", "file"),
            (None, "file"),
        ],
    )
    def test_media_type_for_mime(self, mime, expected):
        assert media_type_for_mime(mime) == expected
