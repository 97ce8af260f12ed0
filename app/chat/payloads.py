"""
Message content payloads.

Every message type has exactly one payload shape. The shapes form a tagged
union keyed by MessageType: parse_payload() picks the arm from the type and
validates the raw dict (from a request body, a WebSocket event or the
upload collaborator) into a frozen dataclass. The dataclass serializes back
to the JSON stored in Message.content.

Payload arms:
    text                      -> TextPayload {text}
    image/video/audio/file    -> MediaPayload {url, filename, size, mime_type, duration?, dimensions?}
    location                  -> LocationPayload {lat, lng, address?}
    contact                   -> ContactPayload {name, phone?, email?}
    sticker                   -> StickerPayload {sticker_id, url?}
    system                    -> SystemPayload {action, data}
    order_update              -> OrderUpdatePayload {order_id, status, note?}
    delivery                  -> DeliveryPayload {order_id, status, eta?, location?}

Usage:
    from chat.payloads import parse_payload

    payload = parse_payload(MessageType.LOCATION, {"lat": 10.7, "lng": 106.6})
    Message.objects.create(..., content=payload.to_content())

Error codes (raised as core.exceptions.ValidationError):
    INVALID_MESSAGE_TYPE: Unknown message type
    INVALID_PAYLOAD: Payload is missing fields or has the wrong shape
    EMPTY_CONTENT: Text is empty after trimming
    CONTENT_TOO_LONG: Text exceeds MESSAGE_CONFIG.MAX_TEXT_LENGTH
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Union

from django.core.exceptions import ImproperlyConfigured

from core.exceptions import ValidationError

from chat.constants import MESSAGE_CONFIG
from chat.models import MessageType


def _require_mapping(raw: Any) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(
            "Message content must be an object",
            error_code="INVALID_PAYLOAD",
        )
    return raw


def _require_str(raw: dict, *keys: str) -> str:
    """First non-empty string among keys (accepts snake_case and camelCase)."""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise ValidationError(
        f"Field '{keys[0]}' is required",
        error_code="INVALID_PAYLOAD",
        details={keys[0]: ["This field is required."]},
    )


def _optional(raw: dict, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _coordinate(raw: dict, key: str, limit: float) -> float:
    try:
        value = float(raw[key])
    except (KeyError, TypeError, ValueError):
        raise ValidationError(
            f"Field '{key}' must be a number",
            error_code="INVALID_PAYLOAD",
            details={key: ["A valid number is required."]},
        )
    if not -limit <= value <= limit:
        raise ValidationError(
            f"Field '{key}' is out of range",
            error_code="INVALID_PAYLOAD",
            details={key: [f"Must be between -{limit} and {limit}."]},
        )
    return value


def _compact(values: dict) -> dict:
    return {key: value for key, value in values.items() if value is not None}


@dataclass(frozen=True)
class TextPayload:
    text: str

    @classmethod
    def parse(cls, raw: Any) -> TextPayload:
        text = raw.get("text") if isinstance(raw, dict) else raw
        if not isinstance(text, str):
            raise ValidationError("Text must be a string", error_code="INVALID_PAYLOAD")

        text = text.strip()
        if not text:
            raise ValidationError(
                "Message content cannot be empty",
                error_code="EMPTY_CONTENT",
            )
        if len(text) > MESSAGE_CONFIG.MAX_TEXT_LENGTH:
            raise ValidationError(
                f"Message exceeds {MESSAGE_CONFIG.MAX_TEXT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
                details={"max_length": MESSAGE_CONFIG.MAX_TEXT_LENGTH},
            )
        return cls(text=text)

    def to_content(self) -> dict:
        return {"text": self.text}

    def preview(self) -> str:
        return self.text


@dataclass(frozen=True)
class MediaPayload:
    """
    Descriptor returned by the upload collaborator.

    Stored verbatim apart from key normalization. The bytes live in
    object storage; only the URL is kept here.
    """

    url: str
    filename: str
    size: int = 0
    mime_type: str = ""
    duration: float | None = None
    dimensions: dict | None = None

    @classmethod
    def parse(cls, raw: Any) -> MediaPayload:
        raw = _require_mapping(raw)
        url = _require_str(raw, "url")
        filename = _optional(raw, "filename", "name") or url.rsplit("/", 1)[-1]
        try:
            size = int(raw.get("size") or 0)
        except (TypeError, ValueError):
            raise ValidationError(
                "Field 'size' must be an integer",
                error_code="INVALID_PAYLOAD",
            )
        return cls(
            url=url,
            filename=str(filename),
            size=size,
            mime_type=str(_optional(raw, "mime_type", "mimeType") or ""),
            duration=_optional(raw, "duration"),
            dimensions=_optional(raw, "dimensions"),
        )

    def to_content(self) -> dict:
        return _compact(asdict(self))

    def preview(self) -> str:
        kind = media_type_for_mime(self.mime_type)
        return f"[{kind}] {self.filename}"


@dataclass(frozen=True)
class LocationPayload:
    lat: float
    lng: float
    address: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> LocationPayload:
        raw = _require_mapping(raw)
        return cls(
            lat=_coordinate(raw, "lat", 90),
            lng=_coordinate(raw, "lng", 180),
            address=_optional(raw, "address"),
        )

    def to_content(self) -> dict:
        return _compact(asdict(self))

    def preview(self) -> str:
        return f"[location] {self.address}" if self.address else "[location]"


@dataclass(frozen=True)
class ContactPayload:
    name: str
    phone: str | None = None
    email: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> ContactPayload:
        raw = _require_mapping(raw)
        return cls(
            name=_require_str(raw, "name"),
            phone=_optional(raw, "phone"),
            email=_optional(raw, "email"),
        )

    def to_content(self) -> dict:
        return _compact(asdict(self))

    def preview(self) -> str:
        return f"[contact] {self.name}"


@dataclass(frozen=True)
class StickerPayload:
    sticker_id: str
    url: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> StickerPayload:
        raw = _require_mapping(raw)
        return cls(
            sticker_id=_require_str(raw, "sticker_id", "stickerId"),
            url=_optional(raw, "url"),
        )

    def to_content(self) -> dict:
        return _compact(asdict(self))

    def preview(self) -> str:
        return "[sticker]"


@dataclass(frozen=True)
class SystemPayload:
    action: str
    data: dict = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any) -> SystemPayload:
        raw = _require_mapping(raw)
        data = raw.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError(
                "System data must be an object",
                error_code="INVALID_PAYLOAD",
            )
        return cls(action=_require_str(raw, "action"), data=data)

    def to_content(self) -> dict:
        return {"action": self.action, "data": self.data}

    def preview(self) -> str:
        return self.action.replace("_", " ").capitalize()


@dataclass(frozen=True)
class OrderUpdatePayload:
    order_id: str
    status: str
    note: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> OrderUpdatePayload:
        raw = _require_mapping(raw)
        return cls(
            order_id=_require_str(raw, "order_id", "orderId"),
            status=_require_str(raw, "status"),
            note=_optional(raw, "note"),
        )

    def to_content(self) -> dict:
        return _compact(asdict(self))

    def preview(self) -> str:
        return f"Order {self.order_id}: {self.status}"


@dataclass(frozen=True)
class DeliveryPayload:
    order_id: str
    status: str
    eta: str | None = None
    location: dict | None = None

    @classmethod
    def parse(cls, raw: Any) -> DeliveryPayload:
        raw = _require_mapping(raw)
        location = _optional(raw, "location")
        if location is not None:
            location = LocationPayload.parse(location).to_content()
        return cls(
            order_id=_require_str(raw, "order_id", "orderId"),
            status=_require_str(raw, "status"),
            eta=_optional(raw, "eta"),
            location=location,
        )

    def to_content(self) -> dict:
        return _compact(asdict(self))

    def preview(self) -> str:
        if self.eta:
            return f"Delivery {self.status} (ETA {self.eta})"
        return f"Delivery {self.status}"


Payload = Union[
    TextPayload,
    MediaPayload,
    LocationPayload,
    ContactPayload,
    StickerPayload,
    SystemPayload,
    OrderUpdatePayload,
    DeliveryPayload,
]


PAYLOAD_TYPES: dict[str, type] = {
    MessageType.TEXT: TextPayload,
    MessageType.IMAGE: MediaPayload,
    MessageType.VIDEO: MediaPayload,
    MessageType.AUDIO: MediaPayload,
    MessageType.FILE: MediaPayload,
    MessageType.LOCATION: LocationPayload,
    MessageType.CONTACT: ContactPayload,
    MessageType.STICKER: StickerPayload,
    MessageType.SYSTEM: SystemPayload,
    MessageType.ORDER_UPDATE: OrderUpdatePayload,
    MessageType.DELIVERY: DeliveryPayload,
}

_unmapped = set(MessageType.values) - set(PAYLOAD_TYPES)
if _unmapped:
    raise ImproperlyConfigured(
        f"Message types without a payload shape: {sorted(_unmapped)}"
    )


def parse_payload(message_type: str, raw: Any) -> Payload:
    """
    Validate raw content for a message type.

    Raises:
        ValidationError: INVALID_MESSAGE_TYPE, INVALID_PAYLOAD,
            EMPTY_CONTENT or CONTENT_TOO_LONG
    """
    payload_cls = PAYLOAD_TYPES.get(message_type)
    if payload_cls is None:
        raise ValidationError(
            f"Unknown message type '{message_type}'",
            error_code="INVALID_MESSAGE_TYPE",
        )
    return payload_cls.parse(raw)


def preview_content(message_type: str, content: dict | None) -> str:
    """
    Short human-readable rendering of stored content.

    Stored content was validated on write; anything unparseable (legacy
    rows) falls back to an empty preview.
    """
    try:
        return parse_payload(message_type, content or {}).preview()
    except ValidationError:
        return ""


def media_type_for_mime(mime_type: str | None) -> str:
    """Map a MIME type to the media message type (image/video/audio/file)."""
    prefix = (mime_type or "").split("/", 1)[0].lower()
    if prefix in (MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO):
        return prefix
    return MessageType.FILE
