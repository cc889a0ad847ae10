"""
Redis Queue Server
Stores queues in Redis and commits transactions with WATCH/MULTI/EXEC
"""

from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional
from uuid import uuid4

import redis
import structlog
from redis.exceptions import RedisError, WatchError

from returntosource.errors import QueueAccessError, QueueErrorCode
from returntosource.models.message import Message
from returntosource.queues.base import LookupAction, QueueBroker, QueueConnector
from returntosource.queues.transaction import OperationKind, StagedOperation

logger = structlog.get_logger(__name__)


class RedisBroker(QueueBroker):
    """
    Queue server backed by one Redis database

    Key layout per queue (under ``key_prefix``):
    - ``{prefix}:{queue}:meta``: hash with the ``transactional`` flag
    - ``{prefix}:{queue}:seq``: lookup id counter
    - ``{prefix}:{queue}:order``: sorted set of lookup ids, scored by lookup id
    - ``{prefix}:{queue}:ids``: hash of message id -> lookup id
    - ``{prefix}:{queue}:msg:{lookup_id}``: hash with the message properties
    """

    def __init__(
        self,
        url: str,
        key_prefix: str = "rts",
        socket_timeout: Optional[float] = 10.0,
        poll_interval: float = 0.1,
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize Redis broker

        Args:
            url: Redis server URL
            key_prefix: Prefix for every key this broker touches
            socket_timeout: Socket timeout in seconds
            poll_interval: Seconds between polls while waiting for a message
            client: Existing client to use instead of connecting to url
        """
        super().__init__(url)
        self.key_prefix = key_prefix
        self.poll_interval = poll_interval
        self._client = client or redis.Redis.from_url(url, socket_timeout=socket_timeout)

    def _key(self, name: str, suffix: str) -> str:
        return f"{self.key_prefix}:{name}:{suffix}"

    def _message_key(self, name: str, lookup_id: int) -> str:
        return self._key(name, f"msg:{lookup_id}")

    @contextmanager
    def _translate_errors(self, name: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except WatchError as e:
            raise QueueAccessError(
                "Transaction aborted by a concurrent change",
                QueueErrorCode.TRANSACTION_CONFLICT,
                queue=name,
            ) from e
        except RedisError as e:
            raise QueueAccessError(
                f"Redis operation failed on {self.url}: {e}",
                QueueErrorCode.CONNECTION,
                queue=name,
            ) from e

    def create_queue(self, name: str, transactional: bool = True) -> None:
        with self._translate_errors(name):
            self._client.hsetnx(self._key(name, "meta"), "transactional", int(transactional))

    def queue_exists(self, name: str) -> bool:
        with self._translate_errors(name):
            return bool(self._client.exists(self._key(name, "meta")))

    def is_transactional(self, name: str) -> bool:
        with self._translate_errors(name):
            flag = self._client.hget(self._key(name, "meta"), "transactional")

        if flag is None:
            raise QueueAccessError(
                f"Queue '{name}' does not exist on {self.url}",
                QueueErrorCode.QUEUE_NOT_FOUND,
                queue=name,
            )
        return flag == b"1"

    def find_by_id(self, name: str, message_id: str) -> Optional[Message]:
        with self._translate_errors(name):
            lookup_id = self._client.hget(self._key(name, "ids"), message_id)
            if lookup_id is None:
                return None
            return self._load(name, int(lookup_id))

    def find_by_lookup_id(
        self, name: str, action: LookupAction, lookup_id: int
    ) -> Optional[Message]:
        order = self._key(name, "order")

        with self._translate_errors(name):
            if action is LookupAction.CURRENT:
                return self._load(name, lookup_id)

            if action is LookupAction.FIRST:
                found = self._client.zrange(order, 0, 0)
            elif action is LookupAction.LAST:
                found = self._client.zrange(order, -1, -1)
            elif action is LookupAction.NEXT:
                found = self._client.zrangebyscore(order, f"({lookup_id}", "+inf", start=0, num=1)
            else:
                found = self._client.zrevrangebyscore(order, f"({lookup_id}", "-inf", start=0, num=1)

            if not found:
                return None
            return self._load(name, int(found[0]))

    def list_messages(self, name: str) -> List[Message]:
        with self._translate_errors(name):
            lookup_ids = self._client.zrange(self._key(name, "order"), 0, -1)

            with self._client.pipeline(transaction=False) as pipe:
                for lookup_id in lookup_ids:
                    pipe.hgetall(self._message_key(name, int(lookup_id)))
                rows = pipe.execute()

        # Messages removed between the two round trips come back empty
        return [_from_hash(row) for row in rows if row]

    def apply(self, operations: List[StagedOperation]) -> None:
        removes = [op for op in operations if op.kind is OperationKind.REMOVE]
        sends = [op for op in operations if op.kind is OperationKind.SEND]

        for op in sends:
            if not self.queue_exists(op.queue):
                raise QueueAccessError(
                    f"Queue '{op.queue}' does not exist on {self.url}",
                    QueueErrorCode.QUEUE_NOT_FOUND,
                    queue=op.queue,
                )

        with self._translate_errors():
            # Lookup ids are allocated up front; an aborted commit leaves a gap
            allocated = [(op, int(self._client.incr(self._key(op.queue, "seq")))) for op in sends]
            watched = [self._message_key(op.queue, op.message.lookup_id) for op in removes]

            with self._client.pipeline() as pipe:
                if watched:
                    pipe.watch(*watched)

                for op, key in zip(removes, watched):
                    if not pipe.exists(key):
                        raise QueueAccessError(
                            f"Message {op.message.id} is no longer in queue '{op.queue}'",
                            QueueErrorCode.TRANSACTION_CONFLICT,
                            queue=op.queue,
                        )

                pipe.multi()

                for op, key in zip(removes, watched):
                    pipe.delete(key)
                    pipe.hdel(self._key(op.queue, "ids"), op.message.id)
                    pipe.zrem(self._key(op.queue, "order"), op.message.lookup_id)

                for op, lookup_id in allocated:
                    message = op.message.copy()
                    message.lookup_id = lookup_id
                    message.id = f"{uuid4()}\\{lookup_id}"

                    pipe.hset(self._message_key(op.queue, lookup_id), mapping=_to_hash(message))
                    pipe.hset(self._key(op.queue, "ids"), message.id, lookup_id)
                    pipe.zadd(self._key(op.queue, "order"), {lookup_id: lookup_id})

                pipe.execute()

        logger.debug(
            "Redis transaction committed",
            url=self.url,
            removed=len(removes),
            sent=len(sends),
        )

    def close(self) -> None:
        self._client.close()

    def _load(self, name: str, lookup_id: int) -> Optional[Message]:
        row = self._client.hgetall(self._message_key(name, lookup_id))
        if not row:
            return None
        return _from_hash(row)


def _to_hash(message: Message) -> Dict[str, object]:
    return {
        "id": message.id,
        "lookup_id": message.lookup_id,
        "body": bytes(message.body),
        "extension": bytes(message.extension),
        "label": message.label,
        "correlation_id": message.correlation_id,
        "app_specific": message.app_specific,
        "recoverable": int(message.recoverable),
        "time_to_be_received": "" if message.time_to_be_received is None else message.time_to_be_received,
        "response_queue": message.response_queue or "",
    }


def _from_hash(row: Dict[bytes, bytes]) -> Message:
    def text(field: str) -> str:
        return row.get(field.encode(), b"").decode("utf-8")

    ttbr = text("time_to_be_received")

    return Message(
        id=text("id"),
        lookup_id=int(text("lookup_id") or 0),
        body=row.get(b"body", b""),
        extension=row.get(b"extension", b""),
        label=text("label"),
        correlation_id=text("correlation_id"),
        app_specific=int(text("app_specific") or 0),
        recoverable=text("recoverable") != "0",
        time_to_be_received=float(ttbr) if ttbr else None,
        response_queue=text("response_queue") or None,
    )


class RedisConnector(QueueConnector):
    """Connector whose servers are Redis databases"""

    def __init__(
        self,
        key_prefix: str = "rts",
        socket_timeout: Optional[float] = 10.0,
        poll_interval: float = 0.1,
    ):
        super().__init__()
        self.key_prefix = key_prefix
        self.socket_timeout = socket_timeout
        self.poll_interval = poll_interval

    def _create_broker(self, server_url: str) -> QueueBroker:
        return RedisBroker(
            server_url,
            key_prefix=self.key_prefix,
            socket_timeout=self.socket_timeout,
            poll_interval=self.poll_interval,
        )
