"""Outbound message model and provider payload rendering.

Every message validates its structural bounds on construction and again in
validate(), so an invalid message never reaches the network. Bounds are
never satisfied by truncation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from linegate.errors import ValidationError

MAX_TEXT_LENGTH = 5000
MAX_ALT_TEXT_LENGTH = 400
MAX_LABEL_LENGTH = 20
MAX_POSTBACK_DATA_LENGTH = 300
MAX_CARD_TITLE_LENGTH = 40
MAX_CARD_TEXT_LENGTH = 160
MAX_CARD_ACTIONS = 4
MAX_CAROUSEL_COLUMN_ACTIONS = 3
MAX_CAROUSEL_COLUMNS = 10
MAX_QUICK_REPLY_OPTIONS = 13
MAX_MESSAGES_PER_CALL = 5


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValidationError(message)


def _check_length(name: str, value: str | None, limit: int, required: bool = False) -> None:
    if value is None or value == "":
        _require(not required, f"{name} is required")
        return
    _require(len(value) <= limit, f"{name} length {len(value)} exceeds {limit}")


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UriAction:
    label: str
    uri: str

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check_length("action label", self.label, MAX_LABEL_LENGTH, required=True)
        _require(
            self.uri.startswith(("https://", "http://", "tel:", "line://")),
            "uri action needs an http(s), tel or line uri",
        )

    def to_payload(self) -> dict[str, Any]:
        return {"type": "uri", "label": self.label, "uri": self.uri}


@dataclass(frozen=True)
class PostbackAction:
    label: str
    data: str
    display_text: str | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check_length("action label", self.label, MAX_LABEL_LENGTH, required=True)
        _check_length("postback data", self.data, MAX_POSTBACK_DATA_LENGTH, required=True)
        _check_length("display text", self.display_text, 300)

    def to_payload(self) -> dict[str, Any]:
        payload = {"type": "postback", "label": self.label, "data": self.data}
        if self.display_text:
            payload["displayText"] = self.display_text
        return payload


@dataclass(frozen=True)
class MessageAction:
    label: str
    text: str

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check_length("action label", self.label, MAX_LABEL_LENGTH, required=True)
        _check_length("action text", self.text, 300, required=True)

    def to_payload(self) -> dict[str, Any]:
        return {"type": "message", "label": self.label, "text": self.text}


Action = Union[UriAction, PostbackAction, MessageAction]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextMessage:
    text: str

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _check_length("text", self.text, MAX_TEXT_LENGTH, required=True)

    def to_payload(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class CardMessage:
    """Buttons template: title, text, optional image and up to four actions."""

    title: str | None
    subtitle: str
    actions: tuple[Action, ...]
    image_url: str | None = None
    alt_text: str | None = None

    def __post_init__(self) -> None:
        # Accept any sequence from callers, store immutably
        object.__setattr__(self, "actions", tuple(self.actions))
        self.validate()

    def validate(self, max_actions: int = MAX_CARD_ACTIONS) -> None:
        _check_length("card title", self.title, MAX_CARD_TITLE_LENGTH)
        _check_length("card text", self.subtitle, MAX_CARD_TEXT_LENGTH, required=True)
        _check_length("alt text", self.alt_text, MAX_ALT_TEXT_LENGTH)
        if self.image_url is not None:
            _require(self.image_url.startswith("https://"), "card image url must be https")
        _require(len(self.actions) >= 1, "card needs at least one action")
        _require(
            len(self.actions) <= max_actions,
            f"card has {len(self.actions)} actions, limit is {max_actions}",
        )
        for action in self.actions:
            action.validate()

    def column_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": self.subtitle,
            "actions": [action.to_payload() for action in self.actions],
        }
        if self.title:
            payload["title"] = self.title
        if self.image_url:
            payload["thumbnailImageUrl"] = self.image_url
        return payload

    def to_payload(self) -> dict[str, Any]:
        template = {"type": "buttons", **self.column_payload()}
        return {
            "type": "template",
            "altText": self.alt_text or self.title or self.subtitle,
            "template": template,
        }


@dataclass(frozen=True)
class CarouselMessage:
    """Carousel template: 1..10 cards, each with the same number of actions."""

    columns: tuple[CardMessage, ...]
    alt_text: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        self.validate()

    def validate(self) -> None:
        _check_length("alt text", self.alt_text, MAX_ALT_TEXT_LENGTH, required=True)
        _require(len(self.columns) >= 1, "carousel needs at least one column")
        _require(
            len(self.columns) <= MAX_CAROUSEL_COLUMNS,
            f"carousel has {len(self.columns)} columns, limit is {MAX_CAROUSEL_COLUMNS}",
        )
        for column in self.columns:
            column.validate(max_actions=MAX_CAROUSEL_COLUMN_ACTIONS)
        action_counts = {len(column.actions) for column in self.columns}
        _require(len(action_counts) == 1, "carousel columns must have the same number of actions")

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "template",
            "altText": self.alt_text,
            "template": {
                "type": "carousel",
                "columns": [column.column_payload() for column in self.columns],
            },
        }


@dataclass(frozen=True)
class QuickReplyOption:
    action: Action
    image_url: str | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        self.action.validate()
        if self.image_url is not None:
            _require(self.image_url.startswith("https://"), "quick reply icon url must be https")

    def to_payload(self) -> dict[str, Any]:
        item: dict[str, Any] = {"type": "action", "action": self.action.to_payload()}
        if self.image_url:
            item["imageUrl"] = self.image_url
        return item


@dataclass(frozen=True)
class QuickReplySet:
    """Any non-quick-reply message with 1..13 quick reply options attached."""

    base: TextMessage | CardMessage | CarouselMessage
    options: tuple[QuickReplyOption, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", tuple(self.options))
        self.validate()

    def validate(self) -> None:
        _require(not isinstance(self.base, QuickReplySet), "quick reply base cannot be a quick reply set")
        self.base.validate()
        _require(len(self.options) >= 1, "quick reply set needs at least one option")
        _require(
            len(self.options) <= MAX_QUICK_REPLY_OPTIONS,
            f"quick reply set has {len(self.options)} options, limit is {MAX_QUICK_REPLY_OPTIONS}",
        )
        for option in self.options:
            option.validate()

    def to_payload(self) -> dict[str, Any]:
        payload = self.base.to_payload()
        payload["quickReply"] = {"items": [option.to_payload() for option in self.options]}
        return payload


OutboundMessage = Union[TextMessage, CardMessage, CarouselMessage, QuickReplySet]


def message_kind(message: OutboundMessage) -> str:
    """Short name of an outbound variant for logs."""
    return {
        TextMessage: "text",
        CardMessage: "card",
        CarouselMessage: "carousel",
        QuickReplySet: "quick_reply",
    }.get(type(message), type(message).__name__)


def validate_batch(messages: list[OutboundMessage] | tuple[OutboundMessage, ...]) -> None:
    """Validate a whole reply/push batch. Any failure rejects the batch.

    Raises:
        ValidationError: On an empty batch, too many messages, or any
            invalid message.
    """
    _require(len(messages) >= 1, "no messages to send")
    _require(
        len(messages) <= MAX_MESSAGES_PER_CALL,
        f"{len(messages)} messages in one call, limit is {MAX_MESSAGES_PER_CALL}",
    )
    for message in messages:
        _require(
            isinstance(message, (TextMessage, CardMessage, CarouselMessage, QuickReplySet)),
            f"unsupported outbound message type {type(message).__name__}",
        )
        message.validate()
