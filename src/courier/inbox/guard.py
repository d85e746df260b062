"""
Inbox Gate

Makes repeated delivery of the same message id produce the handler's
effect at most once, while still answering every caller. There is no
retry loop: the next delivery of a failed message id is the retry.
"""

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from ..clock import Clock, utcnow
from ..config import InboxOptions
from ..dispatch import Dispatcher, json_encode
from ..errors import InboxRetriesExhaustedError, format_error
from ..observability import create_span, record_counter
from ..retry import RetryPolicy
from .models import InboxItem
from .store import InboxStore

logger = logging.getLogger(__name__)

InboxHandler = Callable[[], Union[Awaitable[Any], Any]]


class InboxGuard:
    """
    Guards one inbound message against duplicate processing.

    Usage:
        async with gate.guard(message_id, "orders.create") as guard:
            if guard.should_process:
                result = await create_order(request)
                guard.set_response(json_encode(result))
        return guard.response

    If the block raises, the failure is recorded against the message id
    and the exception propagates to the caller.
    """

    def __init__(self, gate: "InboxGate", message_id: str, request_type: str):
        self._gate = gate
        self.message_id = message_id
        self.request_type = request_type
        self.should_process = False
        self.response: Optional[bytes] = None
        self._response_set = False

    def set_response(self, response: bytes):
        self.response = response
        self._response_set = True

    async def __aenter__(self):
        existing = await self._gate._open(self.message_id, self.request_type)
        if existing is not None and existing.is_processed:
            self.response = existing.cached_response or b""
            self.should_process = False
        else:
            self.should_process = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if not self.should_process:
            return False

        if exc_type is None:
            self.response = await self._gate._complete(
                self.message_id, self.response if self._response_set else b""
            )
        elif issubclass(exc_type, Exception):
            await self._gate._fail(self.message_id, exc_val)
        # Cancellation leaves the record untouched; redelivery retries it
        return False


class InboxGate:
    """
    Inline idempotency check keyed by an externally supplied message id.

    Usage:
        gate = InboxGate(store)
        response = await gate.handle("m-1", "orders.create", lambda: create_order(req))
    """

    def __init__(
        self,
        store: InboxStore,
        retention_period: timedelta = timedelta(days=7),
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self.retention_period = retention_period
        self.retry_policy = retry_policy or InboxOptions().retry_policy()
        self._clock = clock or utcnow

    def guard(self, message_id: str, request_type: str) -> InboxGuard:
        _validate(message_id, request_type)
        return InboxGuard(self, message_id, request_type)

    async def handle(self, message_id: str, request_type: str, handler: InboxHandler) -> bytes:
        """
        Run ``handler`` unless ``message_id`` was already processed.

        Returns the handler's serialized response, or the cached response
        of the first successful run for a repeated ``message_id``.
        """
        async with self.guard(message_id, request_type) as guard:
            if guard.should_process:
                with create_span("inbox.handle", {
                    "messaging.message.id": message_id,
                    "messaging.type": request_type,
                }):
                    result = handler()
                    if inspect.isawaitable(result):
                        result = await result
                guard.set_response(json_encode(result))
        return guard.response

    async def dispatch(
        self,
        dispatcher: Dispatcher,
        message_id: str,
        request_type: str,
        payload: bytes
    ) -> bytes:
        """Dispatch a request through the gate."""
        return await self.handle(
            message_id, request_type, lambda: dispatcher.dispatch(request_type, payload)
        )

    async def _open(self, message_id: str, request_type: str) -> Optional[InboxItem]:
        existing = await self._store.get(message_id)

        if existing is None:
            now = self._clock()
            item = InboxItem(
                message_id=message_id,
                request_type=request_type,
                received_at=now,
                expires_at=now + self.retention_period,
            )
            if await self._store.add(item):
                logger.debug(f"Inbox: message {message_id} received ({request_type})")
                return None
            # Lost an insert race with a concurrent delivery
            existing = await self._store.get(message_id)
            if existing is None:
                return None

        if existing.is_processed:
            record_counter("inbox_duplicates_total", 1, {"type": request_type})
            logger.info(f"Inbox: message {message_id} already processed, returning cached response")
            return existing

        if self.retry_policy.is_exhausted(existing.retry_count):
            raise InboxRetriesExhaustedError(message_id, existing.retry_count)

        logger.debug(
            f"Inbox: retrying message {message_id} after {existing.retry_count} failed attempt(s)"
        )
        return existing

    async def _complete(self, message_id: str, response: bytes) -> bytes:
        await asyncio.shield(self._store.mark_processed(message_id, response, self._clock()))
        record_counter("inbox_processed_total")

        # A concurrent delivery may have completed first; its response is the one kept
        stored = await self._store.get(message_id)
        if stored is not None and stored.is_processed:
            if stored.cached_response != response:
                logger.info(
                    f"Inbox: message {message_id} was completed by a concurrent delivery, "
                    f"returning the stored response"
                )
            return stored.cached_response or b""
        return response

    async def _fail(self, message_id: str, error: BaseException):
        current = await self._store.get(message_id)
        attempts = (current.retry_count if current else 0) + 1
        next_retry_at = self.retry_policy.next_retry_at(attempts, self._clock())

        await asyncio.shield(
            self._store.mark_failed(message_id, format_error(error), next_retry_at)
        )
        record_counter("inbox_failed_total")
        logger.warning(f"Inbox: message {message_id} failed (attempt {attempts}): {error}")


def _validate(message_id: str, request_type: str):
    if not (message_id or "").strip():
        raise ValueError("message_id is required")
    if not (request_type or "").strip():
        raise ValueError("request_type is required")
