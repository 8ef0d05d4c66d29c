"""Reference store node and client used by the cluster harness."""

from .client import StoreClient, StoreClientError, TCPClient
from .kv_store import KVStore
from .aof import AOFPersistence
from .node import StoreConfig, StoreNode

__all__ = [
    'StoreClient',
    'StoreClientError',
    'TCPClient',
    'KVStore',
    'AOFPersistence',
    'StoreConfig',
    'StoreNode',
]
