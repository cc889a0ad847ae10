"""
Queue Address Model - logical queue@machine addresses
"""

from dataclasses import dataclass

from returntosource.errors import AddressParseError

LOCAL_MACHINE_ALIASES = (".", "localhost")


@dataclass(frozen=True)
class QueueAddress:
    """
    Logical address of a queue

    Attributes:
        queue: Queue name
        machine: Machine (or clustered virtual server) hosting the queue
    """

    queue: str
    machine: str

    def __post_init__(self) -> None:
        """Validate QueueAddress after initialization"""
        if not self.queue:
            raise AddressParseError("Queue name must be non-empty")

        if not self.machine:
            raise AddressParseError("Machine name must be non-empty")

    @classmethod
    def parse(cls, address: str, local_machine: str = "localhost") -> "QueueAddress":
        """
        Parse an address of the form ``queue`` or ``queue@machine``

        Args:
            address: Address string, typically the FailedQ header value
            local_machine: Machine used when the address names none, or names
                the local machine by alias

        Returns:
            QueueAddress instance

        Raises:
            AddressParseError: If the address is empty or malformed
        """
        if address is None or not address.strip():
            raise AddressParseError("Address must be non-empty")

        parts = address.strip().split("@")
        if len(parts) > 2:
            raise AddressParseError(f"Address contains multiple @ characters: {address}")

        queue = parts[0]
        if not queue:
            raise AddressParseError(f"Address has no queue name: {address}")

        machine = parts[1] if len(parts) == 2 else ""
        if not machine or machine.lower() in LOCAL_MACHINE_ALIASES:
            machine = local_machine

        return cls(queue=queue, machine=machine)

    def __str__(self) -> str:
        return f"{self.queue}@{self.machine}"
