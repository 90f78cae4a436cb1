"""Event router: pure mapping from event variant to handler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from linegate.events.models import (
    MEDIA_CONTENT_TYPES,
    Event,
    FollowEvent,
    JoinEvent,
    LeaveEvent,
    LocationContent,
    MessageEvent,
    PostbackEvent,
    StickerContent,
    TextContent,
    UnfollowEvent,
)
from linegate.messages.outbound import OutboundMessage

from . import handlers
from .commands import CommandDispatcher, build_default_commands, is_command

Handler = Callable[[Event], list[OutboundMessage]]


@dataclass
class HandlerSet:
    """Handlers per event kind. Unset entries fall back to the defaults."""

    conversation: Handler = handlers.conversation_handler
    media: Handler = handlers.media_handler
    follow: Handler = handlers.follow_handler
    unfollow: Handler = handlers.noop_handler
    join: Handler = handlers.join_handler
    leave: Handler = handlers.noop_handler
    postback: Handler = handlers.postback_handler
    noop: Handler = handlers.noop_handler
    commands: CommandDispatcher = field(default_factory=build_default_commands)


class Router:
    """Selects the handler for an event. Never raises for unknown variants."""

    def __init__(self, handler_set: HandlerSet | None = None) -> None:
        self._handlers = handler_set or HandlerSet()
        self._by_type: dict[type, Handler] = {
            FollowEvent: self._handlers.follow,
            UnfollowEvent: self._handlers.unfollow,
            JoinEvent: self._handlers.join,
            LeaveEvent: self._handlers.leave,
            PostbackEvent: self._handlers.postback,
        }

    @property
    def commands(self) -> CommandDispatcher:
        return self._handlers.commands

    def route(self, event: Event) -> Handler:
        if isinstance(event, MessageEvent):
            return self._route_message(event)
        return self._by_type.get(type(event), self._handlers.noop)

    def _route_message(self, event: MessageEvent) -> Handler:
        content = event.content
        if isinstance(content, TextContent):
            if is_command(content.body):
                return self._handlers.commands.handle_text
            return self._handlers.conversation
        if isinstance(content, MEDIA_CONTENT_TYPES):
            return self._handlers.media
        if isinstance(content, (StickerContent, LocationContent)):
            return self._handlers.conversation
        return self._handlers.noop
