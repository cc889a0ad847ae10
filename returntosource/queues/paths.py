"""
Address Resolver - maps logical queue addresses to connection paths
"""

from typing import Dict, Optional, Tuple

import structlog

from returntosource.errors import AddressParseError
from returntosource.models.address import QueueAddress

logger = structlog.get_logger(__name__)

PATH_SEPARATOR = "#"


class AddressResolver:
    """
    Resolves ``queue@machine`` addresses to full queue paths

    A full path is the URL of the queue server hosting the queue followed by
    ``#`` and the queue name, e.g. ``redis://billing01:6379/0#orders``.
    """

    def __init__(
        self,
        url_template: str = "redis://{machine}:6379/0",
        local_machine: str = "localhost",
        machine_urls: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize address resolver

        Args:
            url_template: Server URL template, ``{machine}`` is substituted
            local_machine: Machine used for addresses that name none
            machine_urls: Explicit server URL per machine, overrides the template
        """
        self.url_template = url_template
        self.local_machine = local_machine
        self.machine_urls = {k.lower(): v for k, v in (machine_urls or {}).items()}

    def parse(self, address: str) -> QueueAddress:
        """Parse an address string using the configured local machine"""
        return QueueAddress.parse(address, local_machine=self.local_machine)

    def server_url(self, machine: str) -> str:
        """
        URL of the queue server for a machine

        Args:
            machine: Machine name

        Returns:
            Server URL
        """
        url = self.machine_urls.get(machine.lower())
        if url is None:
            url = self.url_template.format(machine=machine)
        return url

    def to_full_path(self, address: QueueAddress) -> str:
        """
        Full connection path for a queue address

        Args:
            address: Parsed queue address

        Returns:
            Connection path (server URL and queue name)
        """
        path = f"{self.server_url(address.machine)}{PATH_SEPARATOR}{address.queue}"
        logger.debug("Resolved queue address", address=str(address), path=path)
        return path


def split_full_path(path: str) -> Tuple[str, str]:
    """
    Split a full path into server URL and queue name

    Args:
        path: Path produced by AddressResolver.to_full_path

    Returns:
        Tuple of (server_url, queue_name)

    Raises:
        AddressParseError: If the path has no queue part
    """
    server_url, sep, queue = path.partition(PATH_SEPARATOR)
    if not sep or not server_url or not queue:
        raise AddressParseError(f"Not a full queue path: {path}")
    return server_url, queue
