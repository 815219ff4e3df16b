"""Channel carrying requests and notifications that come with a binary payload.

Every message is a frame written to and read from a codec object, which must
provide ``write_payload(data: bytes)``, ``read_payload() -> bytes`` (raising
when the stream ends) and ``close()``.

``internal`` identifiers are a mapping or an object with ``to_dict()``; with
handler ids in use they must also provide ``handler_id(name) -> str``.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from concurrent import futures
from dataclasses import dataclass
from typing import Any

NS_MESSAGE_MAX_LEN = 4194308
NS_PAYLOAD_MAX_LEN = 4194304

_MAX_REQUEST_ID = 4294967295

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any, bytes], None]


class InvalidStateError(Exception):
    """Raised when an operation is attempted on a closed object."""


@dataclass
class _Notification:
    target_id: str
    event: str
    data: Any


def _internal_to_json(internal: Any) -> Any:
    if internal is None:
        return {}
    if hasattr(internal, "to_dict"):
        return internal.to_dict()
    if isinstance(internal, Mapping):
        return dict(internal)
    raise TypeError("internal data must be a mapping or provide to_dict()")


def _handler_id(internal: Any, name: str) -> str:
    get_id = getattr(internal, "handler_id", None)
    if get_id is None:
        raise TypeError("internal data must provide handler_id()")
    return get_id(name)


def _encode(obj: Any) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode()


class PayloadChannel:
    """Sends requests and notifications with payloads and dispatches replies."""

    def __init__(self, codec: Any, use_handler_id: bool = False, timeout: float = 3.0) -> None:
        logger.debug("constructor() useHandlerID=%s", use_handler_id)
        self._codec = codec
        self._use_handler_id = use_handler_id
        self._timeout = timeout
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closed = False
        self._next_id = 0
        self._pending: dict[int, tuple[str, futures.Future]] = {}
        self._pending_notification: _Notification | None = None
        self._subscribers: dict[str, Subscriber] = {}
        self._reader: threading.Thread | None = None

    def start(self) -> None:
        """Start reading incoming frames in a background thread."""
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()

    def close(self) -> None:
        """Close the channel and its codec, failing every pending request."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending.items())
        logger.debug("close()")
        for request_id, (method, fut) in pending:
            try:
                fut.set_exception(
                    InvalidStateError(
                        f"PayloadChannel closed, id: {request_id}, method: {method}"
                    )
                )
            except futures.InvalidStateError:
                pass
        self._codec.close()

    def closed(self) -> bool:
        """Whether the channel is closed."""
        return self._closed

    def notify(self, event: str, internal: Any, data: str, payload: bytes | None = None) -> None:
        """Send a notification followed by its payload."""
        if self._closed:
            raise InvalidStateError("PayloadChannel closed")

        if self._use_handler_id:
            message = f"n:{event}:{_handler_id(internal, event)}:{data}".encode()
        else:
            message = _encode(
                {"event": event, "internal": _internal_to_json(internal), "data": {"ppid": data}}
            )

        if len(message) > NS_MESSAGE_MAX_LEN:
            raise ValueError("PayloadChannel notification too big")
        if payload and len(payload) > NS_PAYLOAD_MAX_LEN:
            raise ValueError("PayloadChannel payload too big")

        self._write_all(message, payload)

    def request(self, method: str, internal: Any, data: str, payload: bytes | None = None) -> Any:
        """Send a request with its payload and return the decoded response data."""
        if self._closed:
            raise InvalidStateError("PayloadChannel closed")

        with self._state_lock:
            self._next_id += 1
            request_id = self._next_id
            if self._next_id == _MAX_REQUEST_ID:
                self._next_id = 1

        logger.debug("request() method=%s id=%d", method, request_id)

        if self._use_handler_id:
            handler = _handler_id(internal, method)
            message = f"r:{request_id}:{method}:{handler}:{data}".encode()
        else:
            message = _encode(
                {
                    "id": request_id,
                    "method": method,
                    "internal": _internal_to_json(internal),
                    "data": {"ppid": data},
                }
            )

        if len(message) > NS_MESSAGE_MAX_LEN:
            raise ValueError("PayloadChannel request too big")
        if payload and len(payload) > NS_PAYLOAD_MAX_LEN:
            raise ValueError("PayloadChannel payload too big")

        fut: futures.Future = futures.Future()
        with self._state_lock:
            if self._closed:
                raise InvalidStateError(
                    f"PayloadChannel closed, id: {request_id}, method: {method}"
                )
            self._pending[request_id] = (method, fut)
        try:
            self._write_all(message, payload)
            try:
                return fut.result(timeout=self._timeout)
            except futures.TimeoutError:
                raise TimeoutError(
                    f"PayloadChannel response timeout, id: {request_id}, method: {method}"
                ) from None
        finally:
            with self._state_lock:
                self._pending.pop(request_id, None)

    def subscribe(self, target_id: str, handler: Subscriber) -> None:
        """Route notifications for ``target_id`` to ``handler(event, data, payload)``."""
        self._subscribers[target_id] = handler

    def unsubscribe(self, target_id: str) -> None:
        """Stop routing notifications for ``target_id``."""
        self._subscribers.pop(target_id, None)

    def process_payload(self, payload: bytes) -> None:
        """Handle one incoming frame: a response, a notification or its payload."""
        notification = self._pending_notification
        if notification is not None:
            self._pending_notification = None
            handler = self._subscribers.get(notification.target_id)
            if handler is not None:
                handler(notification.event, notification.data, payload)
                logger.debug(
                    "received a notification targetId=%s event=%s",
                    notification.target_id,
                    notification.event,
                )
            else:
                logger.debug(
                    "received an unhandled notification targetId=%s event=%s",
                    notification.target_id,
                    notification.event,
                )
            return

        try:
            msg = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            logger.error("received response unmarshal failed: %s payload=%r", exc, payload)
            return
        if not isinstance(msg, dict):
            logger.error("received message is not an object: %r", payload)
            return

        msg_id = msg.get("id") or 0
        target_id = msg.get("targetId") or ""
        event = msg.get("event") or ""

        if isinstance(msg_id, int) and msg_id > 0:
            with self._state_lock:
                entry = self._pending.get(msg_id)
            if entry is None:
                logger.error("received response does not match any sent request id=%d", msg_id)
                return
            method, fut = entry
            error = msg.get("error") or ""
            reason = msg.get("reason") or ""
            try:
                if msg.get("accepted"):
                    logger.debug("request succeeded method=%s id=%d", method, msg_id)
                    fut.set_result(msg.get("data"))
                elif error:
                    logger.error("request failed method=%s id=%d: %s", method, msg_id, reason)
                    if error == "TypeError":
                        fut.set_exception(TypeError(reason))
                    else:
                        fut.set_exception(RuntimeError(reason))
                else:
                    logger.error(
                        "received response is not accepted nor rejected method=%s id=%d",
                        method,
                        msg_id,
                    )
            except futures.InvalidStateError:
                pass
        elif target_id and event:
            self._pending_notification = _Notification(target_id, event, msg.get("data"))
        else:
            logger.error("received message is not a response nor a notification")

    def _write_all(self, message: bytes, payload: bytes | None) -> None:
        with self._write_lock:
            self._codec.write_payload(message)
            if payload:
                self._codec.write_payload(payload)

    def _read_loop(self) -> None:
        try:
            while True:
                try:
                    payload = self._codec.read_payload()
                except Exception as exc:  # noqa: BLE001 - end of stream or I/O failure
                    logger.error("read failed: %s", exc)
                    break
                self.process_payload(payload)
        finally:
            self.close()