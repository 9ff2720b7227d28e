from .base import BaseHandler, NullHandler, SessionHandler
from .dynamodb import DynamoDBHandler
from .file import FileHandler
from .memcached import MemcachedHandler
from .memory import MemoryHandler, MemoryStore
from .redis import RedisHandler
from .remote import LockState, RemoteHandler, RemoteLock

__all__ = [
    "SessionHandler",
    "BaseHandler",
    "NullHandler",
    "FileHandler",
    "RemoteHandler",
    "RemoteLock",
    "LockState",
    "RedisHandler",
    "MemcachedHandler",
    "MemoryHandler",
    "MemoryStore",
    "DynamoDBHandler",
]
