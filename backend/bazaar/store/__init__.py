"""Remote store layer."""

from .contract import RemoteStore, WriteResult, Unsubscribe, ErrorCallback
from .sql_store import SqlRemoteStore

__all__ = [
    "RemoteStore",
    "WriteResult",
    "Unsubscribe",
    "ErrorCallback",
    "SqlRemoteStore",
]
