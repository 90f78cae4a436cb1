"""Default event handlers.

Each handler takes an Event and returns the replies for it (possibly none).
Conversational text is answered by a passthrough echo; natural-language
processing lives outside this service.
"""

from __future__ import annotations

from linegate.events.decoder import parse_postback_data
from linegate.events.models import (
    AudioContent,
    Event,
    FileContent,
    ImageContent,
    LocationContent,
    MessageEvent,
    PostbackEvent,
    StickerContent,
    TextContent,
    VideoContent,
    event_kind,
)
from linegate.messages.outbound import (
    MAX_TEXT_LENGTH,
    MessageAction,
    OutboundMessage,
    QuickReplyOption,
    QuickReplySet,
    TextMessage,
)
from linegate.observability.logging import get_logger
from linegate.observability.redaction import safe_log_context

logger = get_logger(__name__)

LANGUAGES = {"en": "English", "ja": "Japanese"}


def noop_handler(event: Event) -> list[OutboundMessage]:
    logger.debug("event ignored", extra={"extra_fields": safe_log_context(kind=event_kind(event))})
    return []


def conversation_handler(event: Event) -> list[OutboundMessage]:
    """Echo plain text back; acknowledge stickers and locations."""
    if not isinstance(event, MessageEvent):
        return []
    content = event.content
    if isinstance(content, TextContent):
        body = content.body.strip()
        if not body:
            return []
        return [TextMessage(body[:MAX_TEXT_LENGTH])]
    if isinstance(content, StickerContent):
        return [TextMessage("Nice sticker!")]
    if isinstance(content, LocationContent):
        place = content.title or content.address or "your location"
        return [TextMessage(f"Thanks for sharing {place}.")]
    return []


_MEDIA_NAMES = {
    ImageContent: "image",
    VideoContent: "video",
    AudioContent: "audio clip",
    FileContent: "file",
}


def media_handler(event: Event) -> list[OutboundMessage]:
    if not isinstance(event, MessageEvent) or event.content is None:
        return []
    name = _MEDIA_NAMES.get(type(event.content), "attachment")
    return [TextMessage(f"Got your {name}, thanks.")]


def welcome_message() -> QuickReplySet:
    return QuickReplySet(
        base=TextMessage("Thanks for adding me! Send /help to see what I can do."),
        options=(
            QuickReplyOption(MessageAction(label="Help", text="/help")),
            QuickReplyOption(MessageAction(label="Status", text="/status")),
            QuickReplyOption(MessageAction(label="Settings", text="/settings")),
        ),
    )


def follow_handler(event: Event) -> list[OutboundMessage]:
    return [welcome_message()]


def join_handler(event: Event) -> list[OutboundMessage]:
    return [TextMessage("Hello everyone! Send /help to see available commands.")]


def postback_handler(event: Event) -> list[OutboundMessage]:
    if not isinstance(event, PostbackEvent):
        return []
    data = parse_postback_data(event.data)
    action = data.get("action")

    if action == "settings":
        language = LANGUAGES.get(data.get("lang", ""))
        if language is None:
            return [TextMessage("That setting is not available.")]
        return [TextMessage(f"Reply language set to {language}.")]

    logger.info(
        "unhandled postback action",
        extra={"extra_fields": safe_log_context(action=action or "missing")},
    )
    return [TextMessage("Sorry, that option is no longer available.")]
