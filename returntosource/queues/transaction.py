"""
Transactions spanning one or more queues on a single queue server
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

import structlog

from returntosource.errors import QueueAccessError, QueueErrorCode, ReturnToSourceError
from returntosource.models.message import Message

if TYPE_CHECKING:
    from returntosource.queues.base import QueueBroker

logger = structlog.get_logger(__name__)


class OperationKind(str, Enum):
    """Kind of staged queue operation"""

    REMOVE = "REMOVE"
    SEND = "SEND"


@dataclass
class StagedOperation:
    """
    A queue operation waiting for its transaction to commit

    Attributes:
        kind: REMOVE takes message out of queue, SEND appends it
        queue: Name of the queue on the broker
        message: Message being removed (with its identity) or sent
    """

    kind: OperationKind
    queue: str
    message: Message


class TransactionState(str, Enum):
    """Lifecycle of a transaction"""

    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


class Transaction:
    """
    Unit of atomic work across queue operations

    Operations are staged in order and applied all-or-nothing by the queue
    server on commit. Every operation must target the same server.
    """

    def __init__(self):
        self.state = TransactionState.ACTIVE
        self._broker: Optional["QueueBroker"] = None
        self._operations: List[StagedOperation] = []

    @property
    def operations(self) -> List[StagedOperation]:
        """Operations staged so far"""
        return list(self._operations)

    def enlist(self, broker: "QueueBroker", operation: StagedOperation) -> None:
        """
        Stage an operation

        Args:
            broker: Queue server the operation targets
            operation: Operation to stage

        Raises:
            QueueAccessError: If the operation targets a second queue server
        """
        self._ensure_active()

        if self._broker is None:
            self._broker = broker
        elif self._broker is not broker:
            raise QueueAccessError(
                f"Transaction cannot span queue servers {self._broker.url} and {broker.url}",
                QueueErrorCode.DISTRIBUTED_TRANSACTION,
                queue=operation.queue,
            )

        self._operations.append(operation)

    def commit(self) -> None:
        """
        Apply all staged operations atomically

        Raises:
            QueueAccessError: If the queue server rejects the transaction
        """
        self._ensure_active()

        try:
            if self._broker is not None and self._operations:
                self._broker.apply(self._operations)
        except Exception:
            self.state = TransactionState.ROLLED_BACK
            logger.warning("Transaction aborted", operations=len(self._operations))
            raise

        self.state = TransactionState.COMMITTED
        logger.debug("Transaction committed", operations=len(self._operations))

    def rollback(self) -> None:
        """Discard all staged operations"""
        if self.state is not TransactionState.ACTIVE:
            return

        self._operations.clear()
        self.state = TransactionState.ROLLED_BACK
        logger.debug("Transaction rolled back")

    def _ensure_active(self) -> None:
        if self.state is not TransactionState.ACTIVE:
            raise ReturnToSourceError(f"Transaction is {self.state.value.lower()}")


class TransactionScope:
    """
    Context manager around a Transaction

    Leaving the block commits only when complete() was called and no
    exception is propagating; otherwise the transaction rolls back.

    Usage:
        with TransactionScope() as scope:
            message = queue.receive_by_id(message_id, 5.0, scope.transaction)
            destination.send(message, scope.transaction)
            scope.complete()
    """

    def __init__(self):
        self.transaction = Transaction()
        self._completed = False

    def complete(self) -> None:
        """Mark the scope to commit on exit"""
        self._completed = True

    def __enter__(self) -> "TransactionScope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None and self._completed:
            self.transaction.commit()
        else:
            self.transaction.rollback()
