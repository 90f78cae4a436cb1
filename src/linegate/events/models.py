"""Typed inbound event model.

Events are decoded at the webhook boundary into the closed set of variants
below. Downstream code matches on the variant type, never on raw JSON.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Union

from linegate.errors import ReplyHandleConsumed, ReplyHandleExpired
from linegate.infra.time import Clock, utc_now

# Default reply token validity window (seconds from receipt)
DEFAULT_REPLY_TTL_SECONDS = 60

# Inbound media bounds
MAX_TEXT_LENGTH = 5000
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_VIDEO_BYTES = 200 * 1024 * 1024
MAX_VIDEO_DURATION_MS = 60_000
MAX_AUDIO_BYTES = 10 * 1024 * 1024
MAX_AUDIO_DURATION_MS = 300_000
MAX_FILE_BYTES = 300 * 1024 * 1024


class ReplyHandle:
    """Single-use, time-bounded reply token issued with an inbound event."""

    def __init__(
        self,
        token: str,
        issued_at: datetime,
        ttl: timedelta = timedelta(seconds=DEFAULT_REPLY_TTL_SECONDS),
        clock: Clock = utc_now,
    ) -> None:
        self.token = token
        self.issued_at = issued_at
        self.ttl = ttl
        self._clock = clock
        self._consumed = False
        self._lock = threading.Lock()

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + self.ttl

    @property
    def consumed(self) -> bool:
        return self._consumed

    def is_expired(self) -> bool:
        return self._clock() >= self.expires_at

    def ensure_valid(self) -> None:
        """Raise if the handle is past its window. Does not consume."""
        if self.is_expired():
            raise ReplyHandleExpired("reply handle expired")

    def consume(self) -> None:
        """Mark the handle used. Exactly one caller succeeds.

        Raises:
            ReplyHandleConsumed: If already consumed.
            ReplyHandleExpired: If past its validity window.
        """
        with self._lock:
            if self._consumed:
                raise ReplyHandleConsumed("reply handle already consumed")
            self.ensure_valid()
            self._consumed = True

    def __repr__(self) -> str:
        # Token is end-user scoped; keep it out of reprs and logs
        return f"ReplyHandle(issued_at={self.issued_at.isoformat()}, consumed={self._consumed})"


@dataclass(frozen=True)
class Source:
    """Where an event came from. Fields missing from the delivery stay None."""

    type: Literal["user", "group", "room"] | None = None
    user_id: str | None = None
    group_id: str | None = None
    room_id: str | None = None


# ---------------------------------------------------------------------------
# Message content variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextContent:
    message_id: str | None
    body: str


@dataclass(frozen=True)
class ImageContent:
    message_id: str | None
    url: str | None = None
    size: int | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class VideoContent:
    message_id: str | None
    url: str | None = None
    size: int | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class AudioContent:
    message_id: str | None
    url: str | None = None
    size: int | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class FileContent:
    message_id: str | None
    file_name: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class StickerContent:
    message_id: str | None
    package_id: str | None = None
    sticker_id: str | None = None


@dataclass(frozen=True)
class LocationContent:
    message_id: str | None
    title: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class UnknownContent:
    """Message type this gateway does not know yet (tolerated, not routed)."""

    message_id: str | None
    kind: str


MessageContent = Union[
    TextContent,
    ImageContent,
    VideoContent,
    AudioContent,
    FileContent,
    StickerContent,
    LocationContent,
    UnknownContent,
]

MEDIA_CONTENT_TYPES = (ImageContent, VideoContent, AudioContent, FileContent)


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventBase:
    """Fields shared by every event variant."""

    source: Source
    timestamp: datetime | None
    reply_handle: ReplyHandle | None = field(default=None, compare=False)
    webhook_event_id: str | None = None
    is_redelivery: bool = False
    mode: str = "active"

    @property
    def user_id(self) -> str | None:
        return self.source.user_id


@dataclass(frozen=True)
class MessageEvent(EventBase):
    content: MessageContent | None = None


@dataclass(frozen=True)
class FollowEvent(EventBase):
    pass


@dataclass(frozen=True)
class UnfollowEvent(EventBase):
    pass


@dataclass(frozen=True)
class JoinEvent(EventBase):
    pass


@dataclass(frozen=True)
class LeaveEvent(EventBase):
    pass


@dataclass(frozen=True)
class PostbackEvent(EventBase):
    data: str = ""
    params: dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class UnknownEvent(EventBase):
    """Event type this gateway does not know yet (tolerated, routed to no-op)."""

    kind: str = ""


Event = Union[
    MessageEvent,
    FollowEvent,
    UnfollowEvent,
    JoinEvent,
    LeaveEvent,
    PostbackEvent,
    UnknownEvent,
]


def event_kind(event: Event) -> str:
    """Short PII-free name of an event variant for logs."""
    if isinstance(event, UnknownEvent):
        return f"unknown:{event.kind}"
    return type(event).__name__.removesuffix("Event").lower()
