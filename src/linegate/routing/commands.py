"""Slash-command dispatch.

Commands live in a registry populated at startup: adding a command is a
register() call, not a new branch. Keyword matching is case-insensitive
on the first whitespace-delimited token only; arguments keep their case.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from linegate.events.models import Event, MessageEvent, TextContent
from linegate.messages.outbound import (
    CardMessage,
    MessageAction,
    OutboundMessage,
    PostbackAction,
    QuickReplyOption,
    QuickReplySet,
    TextMessage,
)
from linegate.observability.logging import get_logger
from linegate.observability.redaction import safe_log_context

logger = get_logger(__name__)

COMMAND_PREFIX = "/"


class CommandHandler(Protocol):
    """Handles one command: (args, event) -> replies."""

    def __call__(self, args: str, event: Event) -> list[OutboundMessage]:
        ...


@dataclass(frozen=True)
class Command:
    keyword: str
    handler: CommandHandler
    description: str


def is_command(text: str) -> bool:
    return text.strip().startswith(COMMAND_PREFIX)


def parse_command(text: str) -> tuple[str, str]:
    """Split "/Cmd some args" into ("cmd", "some args").

    The keyword is lowercased and stripped of the prefix; args are the
    rest of the text with surrounding whitespace removed.
    """
    stripped = text.strip()
    if stripped.startswith(COMMAND_PREFIX):
        stripped = stripped[len(COMMAND_PREFIX):]
    parts = stripped.split(maxsplit=1)
    if not parts:
        return "", ""
    keyword = parts[0].lower()
    args = parts[1].strip() if len(parts) > 1 else ""
    return keyword, args


class CommandDispatcher:
    """Registry of commands keyed by lowercase keyword."""

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}

    def register(self, keyword: str, handler: CommandHandler, description: str = "") -> None:
        """Register a command handler.

        Raises:
            ValueError: If the keyword is empty, contains whitespace or is
                already registered.
        """
        key = keyword.strip().lstrip(COMMAND_PREFIX).lower()
        if not key or any(ch.isspace() for ch in key):
            raise ValueError(f"invalid command keyword {keyword!r}")
        if key in self._commands:
            raise ValueError(f"command /{key} already registered")
        self._commands[key] = Command(keyword=key, handler=handler, description=description)

    def commands(self) -> list[Command]:
        """Registered commands in keyword order."""
        return [self._commands[key] for key in sorted(self._commands)]

    def __contains__(self, keyword: str) -> bool:
        return keyword.lower() in self._commands

    def dispatch(self, command: str, args: str, event: Event) -> list[OutboundMessage]:
        """Run the handler registered for command, or reply with a help pointer."""
        key = command.lstrip(COMMAND_PREFIX).lower()
        entry = self._commands.get(key)
        if entry is None:
            logger.info(
                "unknown command",
                extra={"extra_fields": safe_log_context(keyword_len=len(key))},
            )
            return [unknown_command_reply(key)]

        logger.info("dispatching command", extra={"extra_fields": safe_log_context(command=key)})
        return list(entry.handler(args, event))

    def handle_text(self, event: Event) -> list[OutboundMessage]:
        """Handler entry point for text message events that start with "/"."""
        if not isinstance(event, MessageEvent) or not isinstance(event.content, TextContent):
            return []
        keyword, args = parse_command(event.content.body)
        return self.dispatch(keyword, args, event)


def unknown_command_reply(keyword: str) -> TextMessage:
    shown = f"/{keyword}" if keyword else "That command"
    return TextMessage(f"{shown} is not a command I know. Send /help to see available commands.")


# ---------------------------------------------------------------------------
# Built-in commands
# ---------------------------------------------------------------------------


def _help_command(dispatcher: CommandDispatcher) -> CommandHandler:
    def handle(args: str, event: Event) -> list[OutboundMessage]:
        lines = ["Available commands:"]
        for command in dispatcher.commands():
            suffix = f" - {command.description}" if command.description else ""
            lines.append(f"/{command.keyword}{suffix}")
        return [TextMessage("\n".join(lines))]

    return handle


def _status_command(status_lines: Callable[[], list[str]]) -> CommandHandler:
    def handle(args: str, event: Event) -> list[OutboundMessage]:
        return [TextMessage("\n".join(["Gateway status:", *status_lines()]))]

    return handle


def settings_card() -> CardMessage:
    return CardMessage(
        title="Settings",
        subtitle="Choose your reply language.",
        alt_text="Settings: choose your reply language",
        actions=(
            PostbackAction(label="English", data="action=settings&lang=en", display_text="English"),
            PostbackAction(label="Japanese", data="action=settings&lang=ja", display_text="Japanese"),
        ),
    )


def _settings_command(args: str, event: Event) -> list[OutboundMessage]:
    return [
        QuickReplySet(
            base=settings_card(),
            options=(QuickReplyOption(MessageAction(label="Help", text="/help")),),
        )
    ]


def build_default_commands(status_lines: Callable[[], list[str]] | None = None) -> CommandDispatcher:
    """Registry with /help, /status and /settings.

    Args:
        status_lines: Provides the body of /status; defaults to a plain
            "running" line.
    """
    dispatcher = CommandDispatcher()
    dispatcher.register("help", _help_command(dispatcher), "list available commands")
    dispatcher.register(
        "status",
        _status_command(status_lines or (lambda: ["running"])),
        "show gateway status",
    )
    dispatcher.register("settings", _settings_command, "change your preferences")
    return dispatcher
