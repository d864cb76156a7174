"""pitwall: live race timing from RedMist and Race-Monitor, merged per car."""

from pitwall.auth import TokenManager
from pitwall.exceptions import (
    APIError,
    AuthError,
    ConnectionFailedError,
    DecodeError,
    NotFoundError,
    PitwallError,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)
from pitwall.live import ConnectionState, LiveConnection, MessageKind, SignalRTransport
from pitwall.racemonitor import RaceMonitorClient
from pitwall.reconcile import Reconciler, merge
from pitwall.redmist import RedMistClient
from pitwall.session import Poller, RaceSession
from pitwall.store import JsonFileStore, MemoryStore, TransponderRegistry
from pitwall.stream import RaceMonitorStream

__all__ = [
    "APIError",
    "AuthError",
    "ConnectionFailedError",
    "ConnectionState",
    "DecodeError",
    "JsonFileStore",
    "LiveConnection",
    "MemoryStore",
    "MessageKind",
    "NotFoundError",
    "PitwallError",
    "Poller",
    "RaceMonitorClient",
    "RaceMonitorStream",
    "RaceSession",
    "RateLimitError",
    "Reconciler",
    "RedMistClient",
    "RequestTimeoutError",
    "SignalRTransport",
    "TokenManager",
    "TransponderRegistry",
    "TransportError",
    "ValidationError",
    "merge",
]

__version__ = "0.1.0"
