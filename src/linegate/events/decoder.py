"""LINE webhook body decoder.

Decodes the raw body into typed events. Each element of the events array is
decoded independently: a malformed element yields a DecodeError for that
index while the rest of the batch still decodes, in array order.

Webhook body structure:
{
  "destination": "U...",
  "events": [{
    "type": "message",
    "mode": "active",
    "timestamp": 1704067200000,
    "webhookEventId": "01H...",
    "deliveryContext": {"isRedelivery": false},
    "source": {"type": "user", "userId": "U..."},
    "replyToken": "...",
    "message": {"id": "...", "type": "text", "text": "..."}
  }]
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable
from urllib.parse import parse_qsl

from linegate.errors import ContentTooLarge, DecodeError, InvalidPayloadError
from linegate.infra.time import Clock, from_epoch_millis, utc_now

from .models import (
    DEFAULT_REPLY_TTL_SECONDS,
    MAX_AUDIO_BYTES,
    MAX_AUDIO_DURATION_MS,
    MAX_FILE_BYTES,
    MAX_IMAGE_BYTES,
    MAX_TEXT_LENGTH,
    MAX_VIDEO_BYTES,
    MAX_VIDEO_DURATION_MS,
    AudioContent,
    Event,
    FileContent,
    FollowEvent,
    ImageContent,
    JoinEvent,
    LeaveEvent,
    LocationContent,
    MessageContent,
    MessageEvent,
    PostbackEvent,
    ReplyHandle,
    Source,
    StickerContent,
    TextContent,
    UnfollowEvent,
    UnknownContent,
    UnknownEvent,
    VideoContent,
)


@dataclass
class DecodeResult:
    """Outcome of decoding one delivery: successful events plus per-event errors."""

    events: list[Event] = field(default_factory=list)
    errors: list[DecodeError] = field(default_factory=list)
    destination: str | None = None


class _Malformed(Exception):
    """Internal: element-level decode failure, converted to DecodeError."""


class _TooLarge(_Malformed):
    pass


def _opt_str(obj: dict[str, Any], key: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _Malformed(f"{key} must be a string")
    return value


def _opt_int(obj: dict[str, Any], key: str) -> int | None:
    value = obj.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Malformed(f"{key} must be an integer")
    if value < 0:
        raise _Malformed(f"{key} must not be negative")
    return value


def _opt_float(obj: dict[str, Any], key: str) -> float | None:
    value = obj.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Malformed(f"{key} must be a number")
    return float(value)


def _check_bound(kind: str, name: str, value: int | None, limit: int) -> None:
    if value is not None and value > limit:
        raise _TooLarge(f"{kind} {name} {value} exceeds {limit}")


def _content_url(message: dict[str, Any]) -> str | None:
    provider = message.get("contentProvider")
    if isinstance(provider, dict) and provider.get("type") == "external":
        url = provider.get("originalContentUrl")
        return url if isinstance(url, str) else None
    return None


def _decode_text(message: dict[str, Any], message_id: str | None) -> TextContent:
    text = message.get("text")
    if not isinstance(text, str):
        raise _Malformed("text message without text")
    if len(text) > MAX_TEXT_LENGTH:
        raise _TooLarge(f"text length {len(text)} exceeds {MAX_TEXT_LENGTH}")
    return TextContent(message_id=message_id, body=text)


def _decode_image(message: dict[str, Any], message_id: str | None) -> ImageContent:
    size = _opt_int(message, "fileSize")
    _check_bound("image", "size", size, MAX_IMAGE_BYTES)
    return ImageContent(
        message_id=message_id,
        url=_content_url(message),
        size=size,
        mime_type=_opt_str(message, "mimeType"),
    )


def _decode_video(message: dict[str, Any], message_id: str | None) -> VideoContent:
    size = _opt_int(message, "fileSize")
    duration = _opt_int(message, "duration")
    _check_bound("video", "size", size, MAX_VIDEO_BYTES)
    _check_bound("video", "duration", duration, MAX_VIDEO_DURATION_MS)
    return VideoContent(
        message_id=message_id,
        url=_content_url(message),
        size=size,
        duration_ms=duration,
    )


def _decode_audio(message: dict[str, Any], message_id: str | None) -> AudioContent:
    size = _opt_int(message, "fileSize")
    duration = _opt_int(message, "duration")
    _check_bound("audio", "size", size, MAX_AUDIO_BYTES)
    _check_bound("audio", "duration", duration, MAX_AUDIO_DURATION_MS)
    return AudioContent(
        message_id=message_id,
        url=_content_url(message),
        size=size,
        duration_ms=duration,
    )


def _decode_file(message: dict[str, Any], message_id: str | None) -> FileContent:
    size = _opt_int(message, "fileSize")
    _check_bound("file", "size", size, MAX_FILE_BYTES)
    return FileContent(
        message_id=message_id,
        file_name=_opt_str(message, "fileName"),
        size=size,
    )


def _decode_sticker(message: dict[str, Any], message_id: str | None) -> StickerContent:
    return StickerContent(
        message_id=message_id,
        package_id=_opt_str(message, "packageId"),
        sticker_id=_opt_str(message, "stickerId"),
    )


def _decode_location(message: dict[str, Any], message_id: str | None) -> LocationContent:
    return LocationContent(
        message_id=message_id,
        title=_opt_str(message, "title"),
        address=_opt_str(message, "address"),
        latitude=_opt_float(message, "latitude"),
        longitude=_opt_float(message, "longitude"),
    )


_CONTENT_DECODERS: dict[str, Callable[[dict[str, Any], str | None], MessageContent]] = {
    "text": _decode_text,
    "image": _decode_image,
    "video": _decode_video,
    "audio": _decode_audio,
    "file": _decode_file,
    "sticker": _decode_sticker,
    "location": _decode_location,
}


def _decode_content(message: Any) -> MessageContent:
    if not isinstance(message, dict):
        raise _Malformed("message must be an object")
    kind = message.get("type")
    if not isinstance(kind, str) or not kind:
        raise _Malformed("message without type")
    message_id = _opt_str(message, "id")
    decoder = _CONTENT_DECODERS.get(kind)
    if decoder is None:
        return UnknownContent(message_id=message_id, kind=kind)
    return decoder(message, message_id)


_SOURCE_TYPES = ("user", "group", "room")


def _decode_source(raw: Any) -> Source:
    if raw is None:
        return Source()
    if not isinstance(raw, dict):
        raise _Malformed("source must be an object")
    source_type = raw.get("type")
    # Source types added by the provider later keep their ids, type unset
    return Source(
        type=source_type if source_type in _SOURCE_TYPES else None,
        user_id=_opt_str(raw, "userId"),
        group_id=_opt_str(raw, "groupId"),
        room_id=_opt_str(raw, "roomId"),
    )


class _ElementDecoder:
    """Decodes one events[] element. Holds the per-delivery clock and TTL."""

    def __init__(self, clock: Clock, reply_ttl: timedelta) -> None:
        self._clock = clock
        self._reply_ttl = reply_ttl

    def __call__(self, raw: Any) -> Event:
        if not isinstance(raw, dict):
            raise _Malformed("event must be an object")

        kind = raw.get("type")
        if not isinstance(kind, str) or not kind:
            raise _Malformed("event without type")

        common = self._common_fields(raw)

        if kind == "message":
            if "message" not in raw:
                raise _Malformed("message event without message")
            return MessageEvent(content=_decode_content(raw["message"]), **common)
        if kind == "follow":
            return FollowEvent(**common)
        if kind == "unfollow":
            return UnfollowEvent(**common)
        if kind == "join":
            return JoinEvent(**common)
        if kind == "leave":
            return LeaveEvent(**common)
        if kind == "postback":
            postback = raw.get("postback")
            if not isinstance(postback, dict):
                raise _Malformed("postback event without postback")
            data = postback.get("data")
            if not isinstance(data, str):
                raise _Malformed("postback without data")
            params = postback.get("params") or {}
            if not isinstance(params, dict):
                raise _Malformed("postback params must be an object")
            return PostbackEvent(
                data=data,
                params={str(k): str(v) for k, v in params.items()},
                **common,
            )
        return UnknownEvent(kind=kind, **common)

    def _common_fields(self, raw: dict[str, Any]) -> dict[str, Any]:
        timestamp_ms = _opt_int(raw, "timestamp")
        reply_token = _opt_str(raw, "replyToken")

        delivery = raw.get("deliveryContext") or {}
        if not isinstance(delivery, dict):
            raise _Malformed("deliveryContext must be an object")
        redelivery = delivery.get("isRedelivery", False)
        if not isinstance(redelivery, bool):
            raise _Malformed("isRedelivery must be a boolean")

        timestamp = None
        if timestamp_ms is not None:
            try:
                timestamp = from_epoch_millis(timestamp_ms)
            except (OverflowError, OSError, ValueError):
                raise _Malformed("timestamp out of range") from None

        handle = None
        if reply_token:
            # Window counted from receipt; provider timestamps may be skewed
            handle = ReplyHandle(
                token=reply_token,
                issued_at=self._clock(),
                ttl=self._reply_ttl,
                clock=self._clock,
            )

        return {
            "source": _decode_source(raw.get("source")),
            "timestamp": timestamp,
            "reply_handle": handle,
            "webhook_event_id": _opt_str(raw, "webhookEventId"),
            "is_redelivery": redelivery,
            "mode": _opt_str(raw, "mode") or "active",
        }


def parse_body(raw_body: bytes) -> dict[str, Any]:
    """Parse the top-level webhook document.

    Raises:
        InvalidPayloadError: If the body is not a JSON object with an events array.
    """
    try:
        document = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidPayloadError("body is not valid JSON") from e
    except RecursionError:
        raise InvalidPayloadError("body nesting too deep") from None

    if not isinstance(document, dict):
        raise InvalidPayloadError("body must be a JSON object")

    events = document.get("events")
    if not isinstance(events, list):
        raise InvalidPayloadError("body has no events array")

    return document


def decode(
    raw_body: bytes,
    *,
    clock: Clock = utc_now,
    reply_ttl: timedelta = timedelta(seconds=DEFAULT_REPLY_TTL_SECONDS),
) -> DecodeResult:
    """Decode a webhook body into typed events with partial-failure semantics.

    Args:
        raw_body: The same bytes the signature was verified against.
        clock: Clock used to stamp reply handles.
        reply_ttl: Validity window for reply handles.

    Returns:
        DecodeResult with decoded events in array order and one DecodeError
        per malformed element.

    Raises:
        InvalidPayloadError: If the top-level document is unusable.
    """
    document = parse_body(raw_body)
    destination = document.get("destination")
    result = DecodeResult(destination=destination if isinstance(destination, str) else None)

    decode_element = _ElementDecoder(clock, reply_ttl)
    for index, raw in enumerate(document["events"]):
        try:
            result.events.append(decode_element(raw))
        except _TooLarge as e:
            result.errors.append(ContentTooLarge(index, str(e)))
        except _Malformed as e:
            result.errors.append(DecodeError(index, str(e)))

    return result


def parse_postback_data(data: str) -> dict[str, str]:
    """Parse postback data of the form "action=settings&lang=en".

    Repeated keys keep the last value; data that is not a query string
    yields an empty mapping.
    """
    return dict(parse_qsl(data, keep_blank_values=True))
