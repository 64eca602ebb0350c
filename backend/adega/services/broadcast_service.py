# Overview: Fan-out of order lifecycle events to live dashboards (server-sent events).

"""
Order event broadcaster

================================================================================
PURPOSE: Push order changes to every connected dashboard (kitchen, delivery,
admin) without polling.
================================================================================

MODEL:
- One Channel per connected client, held in an EventBroadcaster registry.
- publish() pushes a frame to every channel registered at that moment.
  A channel whose write fails (closed, or buffer full because the client
  stopped reading) is pruned on the spot and never retried.
- No replay: a client connecting later only sees later events and must
  fetch current state itself (GET /api/orders). Clients also keep their
  periodic polling as a fallback.
- heartbeat() pushes a liveness ping to all channels; start_heartbeat()
  runs it on a daemon thread every SSE_HEARTBEAT_SECONDS.

WIRE FORMAT (text/event-stream):
    event: <name>\n
    data: <json>\n
    \n

One broadcaster exists per Flask app (app.extensions["broadcaster"]).
Routes fetch it with get_broadcaster() and hand it to the services
explicitly; tests hand in a recording fake instead.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from decimal import Decimal
from typing import Iterator, Optional

from flask import current_app

logger = logging.getLogger(__name__)

CONNECTED = "connected"
HEARTBEAT = "heartbeat"
ORDER_CREATED = "order_created"
ORDER_STATUS_CHANGED = "order_status_changed"
ORDER_ASSIGNED = "order_assigned"
ORDER_FEE_UPDATED = "order_fee_updated"
ORDER_DELETED = "order_deleted"

ORDER_EVENTS = (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    ORDER_ASSIGNED,
    ORDER_FEE_UPDATED,
    ORDER_DELETED,
)


class ChannelClosed(Exception):
    """Write to a channel that is closed or no longer draining."""


def _json_default(value):
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def format_event(event: str, payload: Optional[dict] = None) -> str:
    data = json.dumps(payload or {}, default=_json_default, separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"


class Channel:
    """
    A single observer connection.

    Frames are buffered in a bounded queue between the publishing request
    thread and the streaming response. A full buffer means the client is
    not reading; the write fails and the channel closes itself.
    """

    def __init__(self, *, buffer_size: int = 256):
        self.id = str(uuid.uuid4())
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=buffer_size)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, frame: str) -> None:
        if self.closed:
            raise ChannelClosed(self.id)
        try:
            self._queue.put_nowait(frame)
        except queue.Full:
            self.close()
            raise ChannelClosed(self.id)

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        try:
            # Wake a reader blocked in frames()
            self._queue.put_nowait(None)
        except queue.Full:
            pass

    def frames(self, *, poll_interval: float = 1.0) -> Iterator[str]:
        """Yield frames until the channel is closed."""
        while True:
            try:
                frame = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                if self.closed:
                    return
                continue
            if frame is None:
                return
            yield frame

    def drain(self) -> list[str]:
        """Return every frame queued so far without blocking."""
        frames = []
        while True:
            try:
                frame = self._queue.get_nowait()
            except queue.Empty:
                return frames
            if frame is not None:
                frames.append(frame)


class EventBroadcaster:
    def __init__(self, *, channel_buffer: int = 256):
        self._channel_buffer = channel_buffer
        self._channels: set[Channel] = set()
        self._lock = threading.Lock()
        self._heartbeat_stop = threading.Event()
        self._heartbeat_thread: Optional[threading.Thread] = None

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def register(self, channel: Optional[Channel] = None) -> Channel:
        """Add a channel to the active set and acknowledge the connection."""
        if channel is None:
            channel = Channel(buffer_size=self._channel_buffer)
        with self._lock:
            self._channels.add(channel)
        try:
            channel.send(format_event(CONNECTED, {"message": "Connected to order updates"}))
        except ChannelClosed:
            self.unregister(channel)
        logger.info("SSE channel %s connected (%d active)", channel.id, self.channel_count)
        return channel

    def unregister(self, channel: Channel) -> None:
        with self._lock:
            self._channels.discard(channel)
        channel.close()

    def publish(self, event: str, payload: Optional[dict] = None) -> int:
        """
        Push an event to every registered channel.

        Returns the number of channels that accepted the frame. Channels
        whose write fails are removed from the registry.
        """
        frame = format_event(event, payload)
        with self._lock:
            targets = list(self._channels)

        delivered = 0
        dead = []
        for channel in targets:
            try:
                channel.send(frame)
                delivered += 1
            except ChannelClosed:
                dead.append(channel)

        if dead:
            with self._lock:
                for channel in dead:
                    self._channels.discard(channel)
            logger.warning("Pruned %d dead SSE channel(s) while publishing %s", len(dead), event)

        return delivered

    def heartbeat(self) -> int:
        return self.publish(HEARTBEAT, {"timestamp": int(time.time() * 1000)})

    def start_heartbeat(self, interval: float) -> None:
        if self._heartbeat_thread is not None and self._heartbeat_thread.is_alive():
            return
        self._heartbeat_stop.clear()

        def _loop():
            while not self._heartbeat_stop.wait(interval):
                self.heartbeat()

        self._heartbeat_thread = threading.Thread(target=_loop, name="sse-heartbeat", daemon=True)
        self._heartbeat_thread.start()

    def stop_heartbeat(self) -> None:
        self._heartbeat_stop.set()
        if self._heartbeat_thread is not None:
            self._heartbeat_thread.join(timeout=1)
            self._heartbeat_thread = None

    def shutdown(self) -> None:
        self.stop_heartbeat()
        with self._lock:
            channels = list(self._channels)
            self._channels.clear()
        for channel in channels:
            channel.close()


def get_broadcaster() -> EventBroadcaster:
    """The broadcaster bound to the current Flask app."""
    return current_app.extensions["broadcaster"]
