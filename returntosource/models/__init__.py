"""
Data models for queue messages, headers and addresses
"""

from returntosource.models.address import QueueAddress
from returntosource.models.headers import Headers
from returntosource.models.message import Message

__all__ = ["Message", "Headers", "QueueAddress"]
