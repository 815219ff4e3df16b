"""Base RTP observer shared by active-speaker and audio-level observers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from rtpsfu.producer import EventEmitter, Producer

logger = logging.getLogger(__name__)


class RtpObserver(EventEmitter):
    """Observes RTP streams of producers in a router.

    Emits ``routerclose`` and ``@close``; its observer emits ``close``,
    ``pause``, ``resume``, ``addproducer`` and ``removeproducer``.
    """

    def __init__(
        self,
        internal: Mapping[str, Any],
        channel: Any,
        payload_channel: Any,
        app_data: Any = None,
        get_producer_by_id: Callable[[str], Producer | None] | None = None,
    ) -> None:
        super().__init__()
        self._internal = dict(internal)
        self._channel = channel
        self._payload_channel = payload_channel
        self._app_data = app_data
        self._get_producer_by_id = get_producer_by_id or (lambda _producer_id: None)
        self._closed = False
        self._paused = False
        self._observer = EventEmitter()
        self._state_lock = threading.Lock()
        self._lock = threading.Lock()
        logger.debug("constructor() internal=%s", self._internal)

    @property
    def id(self) -> str:
        """RTP observer id."""
        return self._internal.get("rtpObserverId", "")

    @property
    def closed(self) -> bool:
        """Whether the observer is closed."""
        return self._closed

    @property
    def paused(self) -> bool:
        """Whether the observer is paused."""
        return self._paused

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

    def _request(self, method: str, internal: Mapping[str, Any], data: Any = None) -> None:
        try:
            if data is None:
                self._channel.request(method, internal)
            else:
                self._channel.request(method, internal, data)
        except Exception as exc:  # noqa: BLE001 - the worker's answer is not needed
            logger.warning("%s failed: %s", method, exc)

    def _unsubscribe(self) -> None:
        self._channel.unsubscribe(self.id)
        self._payload_channel.unsubscribe(self.id)

    def close(self) -> None:
        """Close the observer."""
        if not self._mark_closed():
            return
        logger.debug("close()")
        self._unsubscribe()
        self._request("router.closeRtpObserver", self._internal, {"rtpObserverId": self.id})
        self.emit("@close")
        self.remove_all_listeners()
        self._observer.safe_emit("close")
        self._observer.remove_all_listeners()

    def router_closed(self) -> None:
        """Close the observer because its router was closed."""
        if not self._mark_closed():
            return
        logger.debug("routerClosed()")
        self._unsubscribe()
        self.emit("routerclose")
        self.remove_all_listeners()
        self._observer.safe_emit("close")
        self._observer.remove_all_listeners()

    def pause(self) -> None:
        """Pause the observer."""
        with self._lock:
            logger.debug("pause()")
            was_paused = self._paused
            self._request("rtpObserver.pause", self._internal)
            self._paused = True
            if not was_paused:
                self._observer.safe_emit("pause")

    def resume(self) -> None:
        """Resume the observer."""
        with self._lock:
            logger.debug("resume()")
            was_paused = self._paused
            self._request("rtpObserver.resume", self._internal)
            self._paused = False
            if was_paused:
                self._observer.safe_emit("resume")

    def add_producer(self, producer_id: str) -> None:
        """Add a producer to the observer."""
        with self._lock:
            logger.debug("addProducer()")
            producer = self._get_producer_by_id(producer_id)
            internal = {**self._internal, "producerId": producer_id}
            self._request("rtpObserver.addProducer", internal)
            self._observer.safe_emit("addproducer", producer)

    def remove_producer(self, producer_id: str) -> None:
        """Remove a producer from the observer."""
        with self._lock:
            logger.debug("removeProducer()")
            producer = self._get_producer_by_id(producer_id)
            internal = {**self._internal, "producerId": producer_id}
            self._request("rtpObserver.removeProducer", internal)
            self._observer.safe_emit("removeproducer", producer)