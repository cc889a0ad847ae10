"""
Message Data Model - a unit held by a queue
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass
class Message:
    """
    A single message as read from (or written to) a queue

    Attributes:
        id: Queue-assigned identifier, unique per queue instance
        lookup_id: Queue-assigned sequence position, monotonically increasing
            and stable even when ids are reused after a purge
        body: Message payload
        extension: Opaque blob carrying the serialized header map
        label: Free-text label
        correlation_id: Correlation identifier set by the sender
        app_specific: Application-defined integer
        recoverable: Whether the message survives a queue server restart
        time_to_be_received: Seconds the message may wait before expiry (None = forever)
        response_queue: Address replies should be sent to
    """

    body: bytes = b""
    extension: bytes = b""
    id: str = ""
    lookup_id: int = 0
    label: str = ""
    correlation_id: str = ""
    app_specific: int = 0
    recoverable: bool = True
    time_to_be_received: Optional[float] = None
    response_queue: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate Message after initialization"""
        if not isinstance(self.body, (bytes, bytearray)):
            raise TypeError("body must be bytes")

        if not isinstance(self.extension, (bytes, bytearray)):
            raise TypeError("extension must be bytes")

        if self.lookup_id < 0:
            raise ValueError("lookup_id must be non-negative")

    def copy(self) -> "Message":
        """Return an independent copy of this message"""
        return replace(self, body=bytes(self.body), extension=bytes(self.extension))

    def to_outgoing(self) -> "Message":
        """
        Copy of this message without queue-assigned identity

        The receiving queue assigns a fresh id and lookup id on send.
        """
        return replace(
            self,
            id="",
            lookup_id=0,
            body=bytes(self.body),
            extension=bytes(self.extension),
        )
