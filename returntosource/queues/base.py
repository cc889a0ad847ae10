"""
Base Queue Interfaces
Abstract queue handle, queue server broker and connector
"""

import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional

import structlog

from returntosource.errors import QueueAccessError, QueueErrorCode, ReceiveTimeoutError
from returntosource.models.message import Message
from returntosource.queues.paths import split_full_path
from returntosource.queues.transaction import OperationKind, StagedOperation, Transaction

logger = structlog.get_logger(__name__)


class LookupAction(str, Enum):
    """Which message a lookup id refers to"""

    CURRENT = "CURRENT"
    FIRST = "FIRST"
    LAST = "LAST"
    NEXT = "NEXT"
    PREVIOUS = "PREVIOUS"


class QueueHandle(ABC):
    """
    Abstract handle on a single queue

    All queue implementations must provide:
    - transactional: whether the queue accepts transactional operations
    - receive_by_id(): remove a message by id, waiting up to a timeout
    - receive_by_lookup_id(): remove a message by its lookup id
    - send(): append a message
    - get_all_messages(): non-destructive snapshot of the queue

    Receive and send take an optional Transaction. Without one the operation
    takes effect immediately; with one it takes effect when the transaction
    commits.
    """

    def __init__(self, path: str):
        """
        Initialize queue handle

        Args:
            path: Full path of the queue
        """
        self.path = path

    @property
    @abstractmethod
    def transactional(self) -> bool:
        """
        Whether the underlying queue is transactional

        Raises:
            QueueAccessError: If the queue does not exist
        """
        pass

    @abstractmethod
    def receive_by_id(
        self,
        message_id: str,
        timeout: float,
        transaction: Optional[Transaction] = None,
    ) -> Message:
        """
        Receive the message with the given id

        Args:
            message_id: Queue-assigned message id
            timeout: Seconds to wait for the message to become available
            transaction: Transaction to enlist in

        Returns:
            The received message

        Raises:
            ReceiveTimeoutError: If no such message appears before the timeout
            QueueAccessError: On any other queue failure
        """
        pass

    @abstractmethod
    def receive_by_lookup_id(
        self,
        action: LookupAction,
        lookup_id: int,
        transaction: Optional[Transaction] = None,
    ) -> Message:
        """
        Receive a message by lookup id

        Args:
            action: CURRENT for the exact message, FIRST/LAST for the queue
                ends, NEXT/PREVIOUS relative to lookup_id
            lookup_id: Reference lookup id (ignored for FIRST and LAST)
            transaction: Transaction to enlist in

        Returns:
            The received message

        Raises:
            QueueAccessError: If no message matches, or on queue failure
        """
        pass

    @abstractmethod
    def send(self, message: Message, transaction: Optional[Transaction] = None) -> None:
        """
        Send a message to this queue

        The queue assigns the new message its own id and lookup id.

        Raises:
            QueueAccessError: If the queue does not exist, or on queue failure
        """
        pass

    @abstractmethod
    def get_all_messages(self) -> List[Message]:
        """
        Snapshot of all messages currently in the queue, in queue order

        Returns:
            List of message copies; the queue is not modified
        """
        pass

    def close(self) -> None:
        """Release resources held by this handle"""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class QueueBroker(ABC):
    """
    A queue server hosting any number of named queues

    The broker is the unit of atomicity: apply() executes a list of staged
    operations against its queues all-or-nothing.
    """

    poll_interval: float = 0.1

    def __init__(self, url: str):
        """
        Initialize broker

        Args:
            url: Server URL
        """
        self.url = url

    @abstractmethod
    def create_queue(self, name: str, transactional: bool = True) -> None:
        """Create a queue if it does not exist yet"""
        pass

    @abstractmethod
    def queue_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def is_transactional(self, name: str) -> bool:
        pass

    @abstractmethod
    def find_by_id(self, name: str, message_id: str) -> Optional[Message]:
        pass

    @abstractmethod
    def find_by_lookup_id(
        self, name: str, action: LookupAction, lookup_id: int
    ) -> Optional[Message]:
        pass

    @abstractmethod
    def list_messages(self, name: str) -> List[Message]:
        pass

    @abstractmethod
    def apply(self, operations: List[StagedOperation]) -> None:
        """
        Execute staged operations atomically

        REMOVE operations identify their message by lookup id and fail the
        whole batch if it is gone. SEND operations assign a new id and
        lookup id in the target queue.

        Raises:
            QueueAccessError: If any operation cannot be applied
        """
        pass

    def wait_for_message(self, name: str, message_id: str, timeout: float) -> Optional[Message]:
        """
        Poll for a message by id until it is found or the timeout expires

        Args:
            name: Queue name
            message_id: Message id
            timeout: Seconds to wait

        Returns:
            Message copy, or None on timeout
        """
        deadline = time.monotonic() + max(timeout, 0.0)

        while True:
            message = self.find_by_id(name, message_id)
            if message is not None:
                return message

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None

            time.sleep(min(self.poll_interval, remaining))

    def close(self) -> None:
        pass


class BrokeredQueue(QueueHandle):
    """QueueHandle over a named queue on a QueueBroker"""

    def __init__(self, path: str, broker: QueueBroker, name: str):
        super().__init__(path)
        self.broker = broker
        self.name = name

    @property
    def transactional(self) -> bool:
        self._ensure_exists()
        return self.broker.is_transactional(self.name)

    def receive_by_id(
        self,
        message_id: str,
        timeout: float,
        transaction: Optional[Transaction] = None,
    ) -> Message:
        self._ensure_exists()

        message = self.broker.wait_for_message(self.name, message_id, timeout)
        if message is None:
            raise ReceiveTimeoutError(
                f"No message with id '{message_id}' received within {timeout}s",
                queue=self.path,
            )

        self._execute(StagedOperation(OperationKind.REMOVE, self.name, message.copy()), transaction)

        logger.debug("Message received by id", queue=self.path, message_id=message_id)
        return message

    def receive_by_lookup_id(
        self,
        action: LookupAction,
        lookup_id: int,
        transaction: Optional[Transaction] = None,
    ) -> Message:
        self._ensure_exists()

        message = self.broker.find_by_lookup_id(self.name, action, lookup_id)
        if message is None:
            raise QueueAccessError(
                f"No message for lookup {action.value} {lookup_id}",
                QueueErrorCode.MESSAGE_NOT_FOUND,
                queue=self.path,
            )

        self._execute(StagedOperation(OperationKind.REMOVE, self.name, message.copy()), transaction)

        logger.debug(
            "Message received by lookup id",
            queue=self.path,
            action=action.value,
            lookup_id=message.lookup_id,
        )
        return message

    def send(self, message: Message, transaction: Optional[Transaction] = None) -> None:
        self._ensure_exists()
        self._execute(StagedOperation(OperationKind.SEND, self.name, message.to_outgoing()), transaction)
        logger.debug("Message sent", queue=self.path)

    def get_all_messages(self) -> List[Message]:
        self._ensure_exists()
        return self.broker.list_messages(self.name)

    def _execute(self, operation: StagedOperation, transaction: Optional[Transaction]) -> None:
        if transaction is None:
            self.broker.apply([operation])
        else:
            transaction.enlist(self.broker, operation)

    def _ensure_exists(self) -> None:
        if not self.broker.queue_exists(self.name):
            raise QueueAccessError(
                f"Queue '{self.path}' does not exist",
                QueueErrorCode.QUEUE_NOT_FOUND,
                queue=self.path,
            )


class QueueConnector(ABC):
    """
    Opens queue handles from full paths

    One broker is kept per server URL, so handles on queues of the same
    server can share a transaction.
    """

    def __init__(self):
        self._brokers: Dict[str, QueueBroker] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def _create_broker(self, server_url: str) -> QueueBroker:
        pass

    def broker(self, server_url: str) -> QueueBroker:
        """Get (or create) the broker for a server URL"""
        with self._lock:
            broker = self._brokers.get(server_url)
            if broker is None:
                broker = self._create_broker(server_url)
                self._brokers[server_url] = broker
                logger.info("Connected to queue server", url=server_url)
            return broker

    def open(self, path: str) -> QueueHandle:
        """
        Open a handle on the queue at a full path

        Args:
            path: Full queue path from AddressResolver.to_full_path

        Returns:
            Queue handle
        """
        server_url, name = split_full_path(path)
        return BrokeredQueue(path, self.broker(server_url), name)

    def create_queue(self, path: str, transactional: bool = True) -> QueueHandle:
        """
        Create the queue at a full path if missing and open it

        Args:
            path: Full queue path
            transactional: Whether the queue is transactional
        """
        server_url, name = split_full_path(path)
        self.broker(server_url).create_queue(name, transactional=transactional)
        logger.info("Queue created", path=path, transactional=transactional)
        return self.open(path)

    def close(self) -> None:
        """Close every broker connection"""
        with self._lock:
            for broker in self._brokers.values():
                broker.close()
            self._brokers.clear()
