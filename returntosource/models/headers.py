"""
Well-known message header keys
"""

import re
from typing import Dict, Optional

HeaderMap = Dict[str, str]

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

_INTEGER = re.compile(r"\s*[+-]?[0-9]+\s*", re.ASCII)


class Headers:
    """Header keys written by the messaging framework and by this tool"""

    FAILED_Q = "NServiceBus.FailedQ"
    MESSAGE_ID = "NServiceBus.MessageId"
    ORIGINAL_ID = "NServiceBus.OriginalId"
    RETURN_TO_SOURCE_QUEUE_COUNT = "ReturnToSourceQueueCount"


def get_original_id(headers: HeaderMap) -> Optional[str]:
    """
    Original id a failed message was sent with

    NServiceBus.OriginalId wins over MessageId when both are present.

    Args:
        headers: Decoded header map

    Returns:
        The original id, or None if neither header is present
    """
    if Headers.ORIGINAL_ID in headers:
        return headers[Headers.ORIGINAL_ID]

    if Headers.MESSAGE_ID in headers:
        return headers[Headers.MESSAGE_ID]

    return None


def add_or_increment_return_count(headers: HeaderMap) -> None:
    """
    Initialize or bump the ReturnToSourceQueueCount header in place

    Absent becomes "1" and a 32-bit integer value is incremented, wrapping
    at the top of the range. Anything else (underscores, non-ASCII digits,
    out-of-range numbers) is left unchanged.

    Args:
        headers: Header map to update
    """
    key = Headers.RETURN_TO_SOURCE_QUEUE_COUNT

    if key not in headers:
        headers[key] = "1"
        return

    value = headers[key]
    if not _INTEGER.fullmatch(value):
        return

    count = int(value)
    if not INT32_MIN <= count <= INT32_MAX:
        return

    headers[key] = str(INT32_MIN if count == INT32_MAX else count + 1)
