# Overview: Server-sent events stream of order lifecycle changes.

# backend/adega/routes/events.py
"""
Live order updates for the kitchen, delivery and admin dashboards.

GET /api/orders/sse keeps the response open and streams frames:
connected, order_created, order_status_changed, order_assigned,
order_fee_updated, order_deleted, heartbeat.

Nothing is replayed: after connecting, a dashboard loads current state
with GET /api/orders and applies events from then on.
"""

from flask import Blueprint, Response, stream_with_context

from ..services.broadcast_service import get_broadcaster


events_bp = Blueprint("events", __name__, url_prefix="/api/orders")


@events_bp.get("/sse")
def order_events_stream():
    broadcaster = get_broadcaster()
    channel = broadcaster.register()

    def _stream():
        try:
            for frame in channel.frames():
                yield frame
        finally:
            # Client went away (GeneratorExit) or the channel was pruned
            broadcaster.unregister(channel)

    return Response(
        stream_with_context(_stream()),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
