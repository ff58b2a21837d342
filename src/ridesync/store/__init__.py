"""Record store layer.

Typed read/subscribe/write access to the shared collection of request
records, keyed by request id.
"""

from ridesync.store.base import OnChange, RecordStore, Subscription
from ridesync.store.memory import MemoryRecordStore
from ridesync.store.mqtt_feed import MqttRecordFeed
from ridesync.store.rest import RestRecordStore

__all__ = [
    "MemoryRecordStore",
    "MqttRecordFeed",
    "OnChange",
    "RecordStore",
    "RestRecordStore",
    "Subscription",
]
