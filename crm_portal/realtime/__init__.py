from __future__ import annotations

from flask import current_app

from crm_portal.realtime.channel import (
    DELETE,
    EVENT_TYPES,
    INSERT,
    UPDATE,
    ChangeFeed,
    RealtimeChannel,
    RowChange,
    Subscription,
)


EXTENSION_KEY = "crm_realtime"


def init_realtime(app) -> RealtimeChannel:
    channel = RealtimeChannel()
    app.extensions[EXTENSION_KEY] = channel
    return channel


def get_realtime_channel() -> RealtimeChannel:
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    "INSERT",
    "UPDATE",
    "DELETE",
    "EVENT_TYPES",
    "ChangeFeed",
    "RealtimeChannel",
    "RowChange",
    "Subscription",
    "init_realtime",
    "get_realtime_channel",
]
