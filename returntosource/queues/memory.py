"""
In-Memory Queue Server
Process-local broker used for tests and dry runs
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import uuid4

import structlog

from returntosource.errors import QueueAccessError, QueueErrorCode
from returntosource.models.message import Message
from returntosource.queues.base import LookupAction, QueueBroker, QueueConnector
from returntosource.queues.transaction import OperationKind, StagedOperation

logger = structlog.get_logger(__name__)


@dataclass
class _StoredQueue:
    transactional: bool
    # Keyed by lookup id; lookup ids only grow, so insertion order is queue order
    messages: Dict[int, Message] = field(default_factory=dict)
    ids: Dict[str, int] = field(default_factory=dict)
    sequence: int = 0


class InMemoryBroker(QueueBroker):
    """
    Queue server held in process memory

    All state is guarded by one condition variable; apply() validates every
    staged operation before mutating anything, so a batch either applies
    completely or not at all.
    """

    def __init__(self, url: str = "memory://localhost"):
        super().__init__(url)
        self._queues: Dict[str, _StoredQueue] = {}
        self._condition = threading.Condition()

    def create_queue(self, name: str, transactional: bool = True) -> None:
        with self._condition:
            if name not in self._queues:
                self._queues[name] = _StoredQueue(transactional=transactional)

    def queue_exists(self, name: str) -> bool:
        with self._condition:
            return name in self._queues

    def is_transactional(self, name: str) -> bool:
        with self._condition:
            return self._get(name).transactional

    def find_by_id(self, name: str, message_id: str) -> Optional[Message]:
        with self._condition:
            return self._find_by_id(name, message_id)

    def find_by_lookup_id(
        self, name: str, action: LookupAction, lookup_id: int
    ) -> Optional[Message]:
        with self._condition:
            stored = self._get(name)
            lookup_ids = list(stored.messages)

            if action is LookupAction.CURRENT:
                match = lookup_id if lookup_id in stored.messages else None
            elif action is LookupAction.FIRST:
                match = lookup_ids[0] if lookup_ids else None
            elif action is LookupAction.LAST:
                match = lookup_ids[-1] if lookup_ids else None
            elif action is LookupAction.NEXT:
                match = next((i for i in lookup_ids if i > lookup_id), None)
            else:
                match = next((i for i in reversed(lookup_ids) if i < lookup_id), None)

            if match is None:
                return None
            return stored.messages[match].copy()

    def list_messages(self, name: str) -> List[Message]:
        with self._condition:
            return [m.copy() for m in self._get(name).messages.values()]

    def wait_for_message(self, name: str, message_id: str, timeout: float) -> Optional[Message]:
        deadline = time.monotonic() + max(timeout, 0.0)

        with self._condition:
            while True:
                message = self._find_by_id(name, message_id)
                if message is not None:
                    return message

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None

                self._condition.wait(remaining)

    def apply(self, operations: List[StagedOperation]) -> None:
        with self._condition:
            removing = set()
            for op in operations:
                stored = self._get(op.queue)
                if op.kind is not OperationKind.REMOVE:
                    continue

                key = (op.queue, op.message.lookup_id)
                if key in removing or op.message.lookup_id not in stored.messages:
                    raise QueueAccessError(
                        f"Message {op.message.id} is no longer in queue '{op.queue}'",
                        QueueErrorCode.TRANSACTION_CONFLICT,
                        queue=op.queue,
                    )
                removing.add(key)

            for op in operations:
                stored = self._queues[op.queue]

                if op.kind is OperationKind.REMOVE:
                    removed = stored.messages.pop(op.message.lookup_id)
                    stored.ids.pop(removed.id, None)
                else:
                    stored.sequence += 1
                    message = op.message.copy()
                    message.lookup_id = stored.sequence
                    message.id = f"{uuid4()}\\{stored.sequence}"
                    stored.messages[message.lookup_id] = message
                    stored.ids[message.id] = message.lookup_id

            self._condition.notify_all()

    def _find_by_id(self, name: str, message_id: str) -> Optional[Message]:
        stored = self._get(name)
        lookup_id = stored.ids.get(message_id)
        if lookup_id is None:
            return None
        return stored.messages[lookup_id].copy()

    def _get(self, name: str) -> _StoredQueue:
        stored = self._queues.get(name)
        if stored is None:
            raise QueueAccessError(
                f"Queue '{name}' does not exist on {self.url}",
                QueueErrorCode.QUEUE_NOT_FOUND,
                queue=name,
            )
        return stored


class InMemoryConnector(QueueConnector):
    """Connector whose servers are InMemoryBroker instances"""

    def _create_broker(self, server_url: str) -> QueueBroker:
        logger.debug("Creating in-memory queue server", url=server_url)
        return InMemoryBroker(server_url)
