"""
Exception hierarchy for return-to-source
"""

from enum import Enum
from typing import Optional


class ReturnToSourceError(Exception):
    """Base exception for all return-to-source errors"""

    pass


class ConfigurationError(ReturnToSourceError):
    """Invalid queue setup or settings, fatal at startup"""

    pass


class AddressParseError(ReturnToSourceError):
    """Queue address string cannot be parsed"""

    pass


class HeaderCodecError(ReturnToSourceError):
    """Message extension does not hold a valid header document"""

    pass


class QueueErrorCode(str, Enum):
    """Reason a queue operation failed"""

    IO_TIMEOUT = "IO_TIMEOUT"
    MESSAGE_NOT_FOUND = "MESSAGE_NOT_FOUND"
    QUEUE_NOT_FOUND = "QUEUE_NOT_FOUND"
    TRANSACTION_CONFLICT = "TRANSACTION_CONFLICT"
    DISTRIBUTED_TRANSACTION = "DISTRIBUTED_TRANSACTION"
    CONNECTION = "CONNECTION"


class QueueAccessError(ReturnToSourceError):
    """
    A queue operation failed

    Attributes:
        error_code: Machine-readable reason for the failure
        queue: Path of the queue involved, if known
    """

    def __init__(
        self,
        message: str,
        error_code: QueueErrorCode,
        queue: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.queue = queue


class ReceiveTimeoutError(QueueAccessError):
    """No matching message arrived before the receive timeout expired"""

    def __init__(self, message: str, queue: Optional[str] = None):
        super().__init__(message, QueueErrorCode.IO_TIMEOUT, queue=queue)
