"""Metric definitions for the realtime chat core."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the chat hub.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_dispatch_failures_total = registry.counter(
    "realtime_dispatch_failures_total",
    "Number of send or read-receipt attempts that ended rejected.",
    label_names=("stage",),
)


def mark_initial_state() -> None:
    """Expose zero-valued samples for environments that scrape before the first connection."""

    realtime_connections.set(0, scope="sockets")
    realtime_connections.set(0, scope="users")
