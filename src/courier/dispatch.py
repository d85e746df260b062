"""
Dispatcher

The messaging core only ever sees opaque type tags and byte payloads.
Turning a tag into executable code is the Dispatcher's job.

``HandlerRegistry`` is the bundled Dispatcher: an explicit registry that
maps each tag to a (decode, handle, encode) triple.

Usage:
    registry = HandlerRegistry()
    registry.register_request("orders.create", create_order)
    registry.register_notification("orders.created", send_receipt)

    response = await registry.dispatch("orders.create", b'{"sku": "A1"}')
    await registry.publish("orders.created", b'{"order_id": "o-1"}')
"""

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol, runtime_checkable

from .errors import PayloadDecodeError, UnknownMessageTypeError

logger = logging.getLogger(__name__)

Decoder = Callable[[bytes], Any]
Encoder = Callable[[Any], bytes]
Handler = Callable[[Any], Any]


@runtime_checkable
class Dispatcher(Protocol):
    """Executes commands and publishes notifications identified by a tag."""

    async def dispatch(self, type_tag: str, payload: bytes) -> bytes:
        ...

    async def publish(self, type_tag: str, payload: bytes) -> None:
        ...


def json_decode(payload: bytes) -> Any:
    if not payload:
        return None
    return json.loads(payload.decode("utf-8"))


def json_encode(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return json.dumps(value, default=str, separators=(",", ":")).encode("utf-8")


async def _call(handler: Handler, message: Any) -> Any:
    result = handler(message)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class _RequestRoute:
    handler: Handler
    decode: Decoder
    encode: Encoder


@dataclass(frozen=True)
class _NotificationRoute:
    handler: Handler
    decode: Decoder


class HandlerRegistry:
    """
    Dispatcher backed by an explicit tag registry.

    Requests have exactly one handler; notifications fan out to every
    subscriber in registration order. Handlers may be sync or async.
    """

    def __init__(self):
        self._requests: Dict[str, _RequestRoute] = {}
        self._notifications: Dict[str, List[_NotificationRoute]] = {}

    def register_request(
        self,
        type_tag: str,
        handler: Handler,
        decode: Decoder = json_decode,
        encode: Encoder = json_encode
    ) -> None:
        tag = (type_tag or "").strip()
        if not tag:
            raise ValueError("handler_missing_type_tag")
        if tag in self._requests:
            raise ValueError(f"duplicate_handler_for_type:{tag}")
        self._requests[tag] = _RequestRoute(handler, decode, encode)

    def register_notification(
        self,
        type_tag: str,
        handler: Handler,
        decode: Decoder = json_decode
    ) -> None:
        tag = (type_tag or "").strip()
        if not tag:
            raise ValueError("handler_missing_type_tag")
        self._notifications.setdefault(tag, []).append(_NotificationRoute(handler, decode))

    def list_types(self) -> List[str]:
        return sorted(set(self._requests) | set(self._notifications))

    async def dispatch(self, type_tag: str, payload: bytes) -> bytes:
        route = self._requests.get(type_tag)
        if route is None:
            raise UnknownMessageTypeError(type_tag)

        message = _decode(type_tag, route.decode, payload)
        result = await _call(route.handler, message)
        logger.debug("Dispatched request type=%s", type_tag)
        return route.encode(result)

    async def publish(self, type_tag: str, payload: bytes) -> None:
        routes = self._notifications.get(type_tag)
        if not routes:
            raise UnknownMessageTypeError(type_tag)

        for route in routes:
            message = _decode(type_tag, route.decode, payload)
            await _call(route.handler, message)
        logger.debug("Published notification type=%s to %d handler(s)", type_tag, len(routes))


def _decode(type_tag: str, decode: Decoder, payload: bytes) -> Any:
    try:
        return decode(payload)
    except Exception as e:
        raise PayloadDecodeError(type_tag, str(e)) from e
