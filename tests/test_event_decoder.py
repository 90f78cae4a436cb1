"""Tests for webhook body decoding into typed events."""

import json
from datetime import timedelta, timezone

import pytest

from linegate.errors import ContentTooLarge, DecodeError, InvalidPayloadError
from linegate.events.decoder import decode, parse_postback_data
from linegate.events.models import (
    AudioContent,
    FileContent,
    FollowEvent,
    ImageContent,
    JoinEvent,
    LeaveEvent,
    LocationContent,
    MessageEvent,
    PostbackEvent,
    StickerContent,
    TextContent,
    UnfollowEvent,
    UnknownContent,
    UnknownEvent,
    VideoContent,
)

from .helpers import USER_ID, FakeClock, text_event, webhook_body


def _message_event(message: dict) -> dict:
    return {
        "type": "message",
        "replyToken": "rt",
        "source": {"type": "user", "userId": USER_ID},
        "timestamp": 1767268800000,
        "message": message,
    }


class TestTopLevel:
    """Top-level document failures raise InvalidPayloadError (HTTP 400)."""

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[]",
            b'"events"',
            b"{}",
            b'{"events": {}}',
            b"\xff\xfe",
            b'{"events":' + b"[" * 200_000 + b"]" * 200_000 + b"}",
        ],
        ids=["text", "array", "string", "no-events", "events-object", "bad-utf8", "deep-nesting"],
    )
    def test_invalid_documents(self, body):
        with pytest.raises(InvalidPayloadError):
            decode(body)

    def test_empty_events_is_valid(self):
        result = decode(webhook_body())
        assert result.events == []
        assert result.errors == []
        assert result.destination == "Ubot"


class TestMessageEvents:
    def test_text_message(self):
        result = decode(webhook_body(text_event("hello")))

        assert len(result.events) == 1
        event = result.events[0]
        assert isinstance(event, MessageEvent)
        assert event.content == TextContent(message_id="m1", body="hello")
        assert event.user_id == USER_ID
        assert event.webhook_event_id == "01HTEST"
        assert event.is_redelivery is False
        assert event.timestamp.tzinfo == timezone.utc
        assert event.reply_handle.token == "rt1"

    def test_minimal_event_without_source_or_timestamp(self):
        body = b'{"events":[{"type":"message","replyToken":"rt1","message":{"type":"text","text":"/help"}}]}'
        result = decode(body)

        assert result.errors == []
        event = result.events[0]
        assert event.source.user_id is None
        assert event.timestamp is None
        assert event.content.body == "/help"

    def test_redelivery_flag(self):
        raw = text_event("hi")
        raw["deliveryContext"] = {"isRedelivery": True}
        assert decode(webhook_body(raw)).events[0].is_redelivery is True

    def test_unknown_source_type_keeps_ids(self):
        raw = text_event("hi")
        raw["source"] = {"type": "space", "userId": USER_ID}

        [event] = decode(webhook_body(raw)).events

        assert event.source.type is None
        assert event.user_id == USER_ID

    def test_text_over_limit_is_too_large(self):
        result = decode(webhook_body(text_event("x" * 5001)))
        assert result.events == []
        assert isinstance(result.errors[0], ContentTooLarge)

    def test_image_within_bounds(self):
        result = decode(webhook_body(_message_event({
            "id": "i1",
            "type": "image",
            "fileSize": 1024,
            "contentProvider": {"type": "external", "originalContentUrl": "https://example.com/a.jpg"},
        })))
        content = result.events[0].content
        assert isinstance(content, ImageContent)
        assert content.size == 1024
        assert content.url == "https://example.com/a.jpg"

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "image", "fileSize": 10 * 1024 * 1024 + 1},
            {"type": "video", "fileSize": 200 * 1024 * 1024 + 1},
            {"type": "video", "duration": 60_001},
            {"type": "audio", "fileSize": 10 * 1024 * 1024 + 1},
            {"type": "audio", "duration": 300_001},
            {"type": "file", "fileSize": 300 * 1024 * 1024 + 1, "fileName": "big.bin"},
        ],
    )
    def test_media_bounds_decode_to_content_too_large(self, message):
        result = decode(webhook_body(_message_event(message)))
        assert result.events == []
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], ContentTooLarge)
        assert result.errors[0].index == 0

    def test_media_at_bounds_accepted(self):
        result = decode(webhook_body(
            _message_event({"type": "video", "fileSize": 200 * 1024 * 1024, "duration": 60_000}),
            _message_event({"type": "audio", "duration": 300_000}),
            _message_event({"type": "file", "fileSize": 300 * 1024 * 1024, "fileName": "a.zip"}),
        ))
        assert result.errors == []
        assert [type(e.content) for e in result.events] == [VideoContent, AudioContent, FileContent]

    def test_sticker_and_location(self):
        result = decode(webhook_body(
            _message_event({"type": "sticker", "packageId": "1", "stickerId": "2"}),
            _message_event({"type": "location", "title": "Office", "latitude": 35.6, "longitude": 139.7}),
        ))
        sticker, location = (e.content for e in result.events)
        assert isinstance(sticker, StickerContent) and sticker.sticker_id == "2"
        assert isinstance(location, LocationContent) and location.latitude == 35.6

    def test_unknown_message_type_tolerated(self):
        result = decode(webhook_body(_message_event({"id": "x", "type": "hologram"})))
        assert result.errors == []
        assert result.events[0].content == UnknownContent(message_id="x", kind="hologram")


class TestOtherEvents:
    def test_event_variants(self):
        result = decode(webhook_body(
            {"type": "follow", "replyToken": "a", "source": {"type": "user", "userId": USER_ID}},
            {"type": "unfollow", "source": {"type": "user", "userId": USER_ID}},
            {"type": "join", "replyToken": "b", "source": {"type": "group", "groupId": "C1"}},
            {"type": "leave", "source": {"type": "group", "groupId": "C1"}},
            {"type": "postback", "replyToken": "c", "postback": {"data": "action=settings&lang=en"}},
            {"type": "beacon", "replyToken": "d"},
        ))

        assert [type(e) for e in result.events] == [
            FollowEvent, UnfollowEvent, JoinEvent, LeaveEvent, PostbackEvent, UnknownEvent,
        ]
        assert result.events[1].reply_handle is None
        assert result.events[2].source.group_id == "C1"
        assert result.events[4].data == "action=settings&lang=en"
        assert result.events[5].kind == "beacon"

    def test_postback_params(self):
        result = decode(webhook_body({
            "type": "postback",
            "replyToken": "c",
            "postback": {"data": "action=book", "params": {"date": "2026-01-02"}},
        }))
        assert result.events[0].params == {"date": "2026-01-02"}


class TestPartialFailure:
    """One malformed element never sinks the rest of the batch."""

    @pytest.mark.parametrize(
        "malformed",
        [
            "not an object",
            {"replyToken": "x"},
            {"type": "message", "replyToken": "x"},
            {"type": "message", "message": {"type": "text"}},
            {"type": "message", "message": {"type": "text", "text": 5}},
            {"type": "postback", "postback": {}},
            {"type": "follow", "timestamp": "yesterday"},
            {"type": "follow", "source": "planet"},
            {"type": "follow", "timestamp": 10**20},
            {"type": "follow", "deliveryContext": {"isRedelivery": "false"}},
        ],
    )
    def test_one_malformed_among_valid(self, malformed):
        valid = [text_event(f"msg-{i}", reply_token=f"rt{i}") for i in range(3)]
        body = json.dumps({"events": [valid[0], malformed, valid[1], valid[2]]}).encode()

        result = decode(body)

        assert len(result.events) == 3
        assert [e.content.body for e in result.events] == ["msg-0", "msg-1", "msg-2"]
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], DecodeError)
        assert result.errors[0].index == 1


class TestReplyHandles:
    def test_handle_window_starts_at_receipt(self):
        clock = FakeClock()
        result = decode(webhook_body(text_event("hi")), clock=clock, reply_ttl=timedelta(seconds=30))
        handle = result.events[0].reply_handle

        assert handle.issued_at == clock.now
        assert not handle.is_expired()
        clock.advance(seconds=30)
        assert handle.is_expired()


class TestPostbackData:
    def test_query_string(self):
        assert parse_postback_data("action=settings&lang=ja") == {"action": "settings", "lang": "ja"}

    def test_opaque_data(self):
        assert parse_postback_data("opaque") == {}
