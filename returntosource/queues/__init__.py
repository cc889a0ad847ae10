"""
Queue access: handles, transactions, header codec and address resolution
"""

from returntosource.queues.base import (
    BrokeredQueue,
    LookupAction,
    QueueBroker,
    QueueConnector,
    QueueHandle,
)
from returntosource.queues.codec import HeaderCodec
from returntosource.queues.memory import InMemoryBroker, InMemoryConnector
from returntosource.queues.paths import AddressResolver, split_full_path
from returntosource.queues.redis_queue import RedisBroker, RedisConnector
from returntosource.queues.transaction import Transaction, TransactionScope

__all__ = [
    "AddressResolver",
    "BrokeredQueue",
    "HeaderCodec",
    "InMemoryBroker",
    "InMemoryConnector",
    "LookupAction",
    "QueueBroker",
    "QueueConnector",
    "QueueHandle",
    "RedisBroker",
    "RedisConnector",
    "Transaction",
    "TransactionScope",
    "split_full_path",
]
