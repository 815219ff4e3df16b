"""Event emitting and the Producer: a media source injected into a router."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rtpsfu.payload_channel import InvalidStateError
from rtpsfu.rtp_parameters import MediaKind, RtpParameters

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class EventEmitter:
    """Minimal synchronous event emitter."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[tuple[Handler, bool]]] = {}

    def on(self, event: str, handler: Handler) -> None:
        """Call ``handler`` every time ``event`` is emitted."""
        with self._lock:
            self._listeners.setdefault(event, []).append((handler, False))

    def once(self, event: str, handler: Handler) -> None:
        """Call ``handler`` the next time ``event`` is emitted only."""
        with self._lock:
            self._listeners.setdefault(event, []).append((handler, True))

    def off(self, event: str, handler: Handler) -> None:
        """Remove ``handler`` from ``event``."""
        with self._lock:
            listeners = self._listeners.get(event, [])
            self._listeners[event] = [(h, o) for h, o in listeners if h is not handler]

    def emit(self, event: str, *args: Any) -> bool:
        """Call the listeners of ``event``; return whether there were any."""
        with self._lock:
            listeners = list(self._listeners.get(event, []))
            if any(once for _, once in listeners):
                self._listeners[event] = [
                    entry for entry in self._listeners.get(event, []) if not entry[1]
                ]
        for handler, _ in listeners:
            handler(*args)
        return bool(listeners)

    def safe_emit(self, event: str, *args: Any) -> bool:
        """Like ``emit`` but log instead of raising on listener errors."""
        try:
            return self.emit(event, *args)
        except Exception:  # noqa: BLE001 - a listener must not break the caller
            logger.exception("event listener error, event=%s", event)
            return True

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Remove the listeners of ``event``, or of every event if it is None."""
        with self._lock:
            if event is None:
                self._listeners.clear()
            else:
                self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        """Number of listeners registered for ``event``."""
        with self._lock:
            return len(self._listeners.get(event, []))


class ProducerType(str, Enum):
    """Kind of RTP stream layout a producer sends."""

    SIMPLE = "simple"
    SIMULCAST = "simulcast"
    SVC = "svc"


class ProducerTraceEventType(str, Enum):
    """Types of "trace" events a producer can emit."""

    RTP = "rtp"
    KEYFRAME = "keyframe"
    NACK = "nack"
    PLI = "pli"
    FIR = "fir"


@dataclass
class ProducerScore:
    """Score of one RTP stream of a producer."""

    ssrc: int = 0
    rid: str = ""
    score: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProducerScore:
        return cls(
            ssrc=data.get("ssrc") or 0,
            rid=data.get("rid") or "",
            score=data.get("score") or 0,
        )


@dataclass
class ProducerVideoOrientation:
    """Data of a "videoorientationchange" event."""

    camera: bool = False
    flip: bool = False
    rotation: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProducerVideoOrientation:
        return cls(
            camera=bool(data.get("camera", data.get("Camera", False))),
            flip=bool(data.get("flip", False)),
            rotation=data.get("rotation") or 0,
        )


@dataclass
class ProducerTraceEventData:
    """Data of a "trace" event."""

    type: str = ""
    timestamp: int = 0
    direction: str = ""
    info: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProducerTraceEventData:
        return cls(
            type=data.get("type") or "",
            timestamp=data.get("timestamp") or 0,
            direction=data.get("direction") or "",
            info=dict(data.get("info") or {}),
        )


def _decode(data: Any) -> Any:
    if isinstance(data, (bytes, bytearray, str)):
        return json.loads(data)
    return data


class Producer(EventEmitter):
    """An audio or video source injected into a router through a transport.

    Emits ``transportclose``, ``score``, ``videoorientationchange``, ``trace``
    and ``@close``; its observer emits ``close``, ``pause``, ``resume``,
    ``score``, ``videoorientationchange`` and ``trace``.

    ``channel`` must provide ``request(method, internal, data=None)``,
    ``subscribe(target_id, handler)`` and ``unsubscribe(target_id)``;
    ``payload_channel`` must provide ``notify`` and ``unsubscribe``.
    """

    def __init__(
        self,
        internal: Mapping[str, Any],
        kind: MediaKind,
        rtp_parameters: RtpParameters,
        type: ProducerType,
        consumable_rtp_parameters: RtpParameters,
        channel: Any,
        payload_channel: Any,
        app_data: Any = None,
        paused: bool = False,
    ) -> None:
        super().__init__()
        self._internal = dict(internal)
        self._kind = MediaKind(kind)
        self._rtp_parameters = rtp_parameters
        self._type = ProducerType(type)
        self._consumable_rtp_parameters = consumable_rtp_parameters
        self._channel = channel
        self._payload_channel = payload_channel
        self._app_data = {} if app_data is None else app_data
        self._paused = paused
        self._closed = False
        self._score: list[ProducerScore] = []
        self._observer = EventEmitter()
        self._state_lock = threading.Lock()
        self._pause_lock = threading.Lock()
        logger.debug("constructor() internal=%s", self._internal)
        self._channel.subscribe(self.id, self.handle_notification)

    @property
    def id(self) -> str:
        """Producer id."""
        return self._internal.get("producerId", "")

    @property
    def closed(self) -> bool:
        """Whether the producer is closed."""
        return self._closed

    @property
    def kind(self) -> MediaKind:
        """Media kind."""
        return self._kind

    @property
    def rtp_parameters(self) -> RtpParameters:
        """RTP parameters the endpoint sends."""
        return self._rtp_parameters

    @property
    def type(self) -> ProducerType:
        """Producer type."""
        return self._type

    @property
    def consumable_rtp_parameters(self) -> RtpParameters:
        """RTP parameters consumers of this producer see."""
        return self._consumable_rtp_parameters

    @property
    def paused(self) -> bool:
        """Whether the producer is paused."""
        return self._paused

    @property
    def score(self) -> list[ProducerScore]:
        """Latest score of each RTP stream."""
        return list(self._score)

    @property
    def app_data(self) -> Any:
        """Custom application data."""
        return self._app_data

    @property
    def observer(self) -> EventEmitter:
        """Observer emitter for lifecycle and state events."""
        return self._observer

    def _mark_closed(self) -> bool:
        with self._state_lock:
            if self._closed:
                return False
            self._closed = True
            return True

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidStateError("Producer closed")

    def close(self) -> None:
        """Close the producer."""
        if not self._mark_closed():
            return
        logger.debug("close()")
        self._channel.unsubscribe(self.id)
        self._payload_channel.unsubscribe(self.id)
        try:
            self._channel.request(
                "transport.closeProducer", self._internal, {"producerId": self.id}
            )
        except Exception as exc:  # noqa: BLE001 - closing goes on regardless
            logger.error("producer close error failed: %s", exc)
        self.emit("@close")
        self.remove_all_listeners()
        self._notify_observer_closed()

    def transport_closed(self) -> None:
        """Close the producer because its transport was closed."""
        if not self._mark_closed():
            return
        logger.debug("transportClosed()")
        self._channel.unsubscribe(self.id)
        self._payload_channel.unsubscribe(self.id)
        self.safe_emit("transportclose")
        self.remove_all_listeners()
        self._notify_observer_closed()

    def _notify_observer_closed(self) -> None:
        self._observer.safe_emit("close")
        self._observer.remove_all_listeners()

    def dump(self) -> Any:
        """Return the producer dump."""
        logger.debug("dump()")
        self._check_open()
        return self._channel.request("producer.dump", self._internal)

    def get_stats(self) -> list[Any]:
        """Return the producer stats."""
        logger.debug("getStats()")
        self._check_open()
        return list(self._channel.request("producer.getStats", self._internal) or [])

    def pause(self) -> None:
        """Pause the producer."""
        with self._pause_lock:
            logger.debug("pause()")
            self._check_open()
            was_paused = self._paused
            self._channel.request("producer.pause", self._internal)
            self._paused = True
            if not was_paused:
                self._observer.safe_emit("pause")

    def resume(self) -> None:
        """Resume the producer."""
        with self._pause_lock:
            logger.debug("resume()")
            self._check_open()
            was_paused = self._paused
            self._channel.request("producer.resume", self._internal)
            self._paused = False
            if was_paused:
                self._observer.safe_emit("resume")

    def enable_trace_event(self, *types: ProducerTraceEventType | str) -> None:
        """Enable "trace" events of the given types; none disables them."""
        logger.debug("enableTraceEvent()")
        self._check_open()
        values = [t.value if isinstance(t, Enum) else str(t) for t in types]
        self._channel.request("producer.enableTraceEvent", self._internal, {"types": values})

    def send(self, rtp_packet: bytes) -> None:
        """Send an RTP packet (only for producers on a direct transport)."""
        self._payload_channel.notify("producer.send", self._internal, "", rtp_packet)

    def handle_notification(self, event: str, data: Any) -> None:
        """Handle a notification from the worker addressed to this producer."""
        try:
            decoded = _decode(data)
        except ValueError as exc:
            logger.error("failed to unmarshal %s: %s data=%r", event, exc, data)
            return

        if event == "score":
            score = [ProducerScore.from_dict(s) for s in decoded or []]
            self._score = score
            self.safe_emit("score", score)
            self._observer.safe_emit("score", score)
        elif event == "videoorientationchange":
            orientation = ProducerVideoOrientation.from_dict(decoded or {})
            self.safe_emit("videoorientationchange", orientation)
            self._observer.safe_emit("videoorientationchange", orientation)
        elif event == "trace":
            trace = ProducerTraceEventData.from_dict(decoded or {})
            self.safe_emit("trace", trace)
            self._observer.safe_emit("trace", trace)
        else:
            logger.error("ignoring unknown event %s", event)