"""Webhook delivery handling: verify -> decode -> route -> dispatch.

Each delivery is processed on a worker thread. Events of one delivery run
in array order, and every event's sends complete before its handling
returns. handle() waits up to the delivery deadline and then returns so the
HTTP layer can answer; unfinished work keeps running and its outcomes are
logged when it completes.
"""

from __future__ import annotations

import contextvars
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

from linegate.errors import (
    DecodeError,
    GatewayError,
    InvalidPayloadError,
    SendError,
    SignatureInvalid,
)
from linegate.events.decoder import decode
from linegate.events.models import Event, event_kind
from linegate.infra.time import Clock, utc_now
from linegate.messages.outbound import OutboundMessage, TextMessage
from linegate.observability.correlation import correlation_scope, get_correlation_id
from linegate.observability.logging import get_logger
from linegate.observability.redaction import hash_identifier, safe_log_context
from linegate.outbound.dispatcher import OutboundDispatcher
from linegate.routing.router import Router
from linegate.webhook.signature import require_secret, verify

logger = get_logger(__name__)

DEFAULT_DELIVERY_DEADLINE = 10.0
DEFAULT_WORKERS = 8


@dataclass
class EventOutcome:
    """Result of handling one event: replies produced and any error raised."""

    index: int
    kind: str
    messages: list[OutboundMessage] = field(default_factory=list)
    error: Exception | None = None
    fallback_notified: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class WebhookResult:
    """What the HTTP layer needs to answer a delivery.

    status_code: 200 accepted, 401 bad signature, 400 unparseable body.
    completed: False when the deadline passed before processing finished;
        outcomes are then empty and `pending` resolves to them later.
    """

    status_code: int
    error: GatewayError | None = None
    events: list[Event] = field(default_factory=list)
    decode_errors: list[DecodeError] = field(default_factory=list)
    outcomes: list[EventOutcome] = field(default_factory=list)
    completed: bool = True
    pending: Future | None = None


class FallbackNotifier(Protocol):
    """Invoked when replying to an event failed for good."""

    def __call__(self, event: Event, error: SendError) -> bool:
        ...


class PushFallbackNotifier:
    """Pushes a "temporarily unavailable" notice to the event's user."""

    def __init__(self, dispatcher: OutboundDispatcher, support_contact: str = "") -> None:
        self._dispatcher = dispatcher
        self._support_contact = support_contact

    def message(self) -> TextMessage:
        text = "Sorry, I can't reply right now. Please try again later"
        if self._support_contact:
            text += f" or contact support at {self._support_contact}"
        return TextMessage(text + ".")

    def __call__(self, event: Event, error: SendError) -> bool:
        if not event.user_id:
            logger.warning(
                "fallback notification skipped, no user id",
                extra={"extra_fields": safe_log_context(kind=event_kind(event))},
            )
            return False
        try:
            self._dispatcher.push(event.user_id, [self.message()])
        except GatewayError as e:
            logger.error(
                "fallback notification failed",
                extra={
                    "extra_fields": safe_log_context(
                        user_hash=hash_identifier(event.user_id),
                        error_type=type(e).__name__,
                    )
                },
            )
            return False
        return True


class WebhookGateway:
    """Entry point for signed webhook deliveries."""

    def __init__(
        self,
        channel_secret: bytes | str,
        router: Router,
        dispatcher: OutboundDispatcher,
        *,
        fallback: FallbackNotifier | None = None,
        delivery_deadline: float = DEFAULT_DELIVERY_DEADLINE,
        reply_ttl: float = 60.0,
        workers: int = DEFAULT_WORKERS,
        clock: Clock = utc_now,
    ) -> None:
        self._secret = require_secret(channel_secret)
        self._router = router
        self._dispatcher = dispatcher
        self._fallback = fallback
        self._deadline = delivery_deadline
        self._reply_ttl = timedelta(seconds=reply_ttl)
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="linegate-delivery")

    @property
    def router(self) -> Router:
        return self._router

    @property
    def dispatcher(self) -> OutboundDispatcher:
        return self._dispatcher

    def handle(self, raw_body: bytes, signature_header: str | None) -> WebhookResult:
        """Verify, decode and process one delivery.

        Never raises for bad input: signature and parse failures come back
        as 401/400 results before any event is decoded or routed. Calls made
        outside an HTTP request get their own correlation id.
        """
        with correlation_scope(get_correlation_id()) as correlation_id:
            return self._handle_delivery(raw_body, signature_header, correlation_id)

    def _handle_delivery(
        self, raw_body: bytes, signature_header: str | None, correlation_id: str
    ) -> WebhookResult:
        if not verify(raw_body, signature_header, self._secret):
            logger.warning(
                "line signature verification failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        header_present=bool(signature_header),
                        body_len=len(raw_body),
                    )
                },
            )
            return WebhookResult(status_code=401, error=SignatureInvalid("signature mismatch"))

        try:
            decoded = decode(raw_body, clock=self._clock, reply_ttl=self._reply_ttl)
        except InvalidPayloadError as e:
            logger.warning(
                "invalid webhook body",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
            )
            return WebhookResult(status_code=400, error=e)

        for error in decoded.errors:
            logger.warning(
                "webhook event rejected",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        index=error.index,
                        error_type=type(error).__name__,
                        reason=error.reason,
                    )
                },
            )

        logger.info(
            "line webhook received",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    event_count=len(decoded.events),
                    rejected_count=len(decoded.errors),
                    kinds=",".join(event_kind(e) for e in decoded.events),
                    redelivery=any(e.is_redelivery for e in decoded.events),
                )
            },
        )

        result = WebhookResult(status_code=200, events=decoded.events, decode_errors=decoded.errors)
        if not decoded.events:
            return result

        # Worker threads inherit the correlation id through the copied context
        context = contextvars.copy_context()
        future = self._executor.submit(context.run, self.process_events, decoded.events)
        try:
            result.outcomes = future.result(timeout=self._deadline)
        except FuturesTimeout:
            result.completed = False
            result.pending = future
            future.add_done_callback(
                lambda done: context.run(self._log_late_completion, done)
            )
            logger.warning(
                "delivery deadline exceeded, processing continues",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id, deadline_seconds=self._deadline
                    )
                },
            )
        return result

    def process_events(self, events: list[Event]) -> list[EventOutcome]:
        """Handle events in order; one event's failure never stops the next."""
        return [self.process_event(index, event) for index, event in enumerate(events)]

    def process_event(self, index: int, event: Event) -> EventOutcome:
        outcome = EventOutcome(index=index, kind=event_kind(event))
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            index=index,
            kind=outcome.kind,
            user_hash=hash_identifier(event.user_id),
        )

        handler = self._router.route(event)
        try:
            outcome.messages = list(handler(event))
            if outcome.messages:
                self._dispatcher.send(event.reply_handle, outcome.messages)
        except SendError as e:
            outcome.error = e
            logger.error(
                "reply failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            if self._fallback is not None:
                outcome.fallback_notified = self._fallback(event, e)
        except GatewayError as e:
            outcome.error = e
            logger.error(
                "event handling failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
        except Exception as e:
            outcome.error = e
            logger.exception("event handler crashed", extra={"extra_fields": log_ctx})
        else:
            logger.info(
                "event handled",
                extra={"extra_fields": safe_log_context(**log_ctx, reply_count=len(outcome.messages))},
            )
        return outcome

    def _log_late_completion(self, future: Future) -> None:
        if future.exception() is not None:
            logger.error(
                "late delivery processing crashed",
                extra={"extra_fields": safe_log_context(error_type=type(future.exception()).__name__)},
            )
            return
        outcomes: list[EventOutcome] = future.result()
        logger.info(
            "late delivery processing finished",
            extra={
                "extra_fields": safe_log_context(
                    event_count=len(outcomes),
                    failed_count=sum(1 for o in outcomes if not o.ok),
                )
            },
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
