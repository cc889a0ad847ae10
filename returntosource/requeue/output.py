"""
Operator Output
Console lines shown to the person running the tool
"""

import sys
from typing import List, Optional, TextIO

NO_MESSAGE_FOUND_FORMAT = (
    "INFO: No message found with ID '{0}'. Checking headers of all messages."
)
NO_MESSAGE_FOUND_IN_HEADERS_FORMAT = "INFO: No message found with ID '{0}' in any headers."
MISSING_SOURCE_QUEUE_LINE = (
    "ERROR: Message does not have a header indicating from which queue it came. "
    "Cannot be automatically returned to queue."
)
FOUND_MESSAGE_LINE = "Found message - going to return to queue."
SUCCESS_LINE = "Success."
FAILURE_FORMAT = "ERROR: Failed to return message '{0}': {1}"
PROGRESS_MARKER = "."


class OperatorOutput:
    """
    Writes the fixed operator-facing lines to a text stream

    Subclass and override write() to send the lines elsewhere.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def write(self, text: str) -> None:
        stream = self.stream or sys.stdout
        stream.write(text)
        stream.flush()

    def line(self, text: str = "") -> None:
        self.write(text + "\n")

    def no_message_found(self, message_id: str) -> None:
        self.line(NO_MESSAGE_FOUND_FORMAT.format(message_id))

    def no_message_found_in_headers(self, message_id: str) -> None:
        self.line()
        self.line(NO_MESSAGE_FOUND_IN_HEADERS_FORMAT.format(message_id))

    def missing_source_queue(self) -> None:
        self.line(MISSING_SOURCE_QUEUE_LINE)

    def found_message(self) -> None:
        self.line()
        self.line(FOUND_MESSAGE_LINE)

    def success(self) -> None:
        self.line(SUCCESS_LINE)

    def failure(self, message_id: str, error: str) -> None:
        self.line(FAILURE_FORMAT.format(message_id, error))

    def progress(self) -> None:
        self.write(PROGRESS_MARKER)


class RecordingOutput(OperatorOutput):
    """Keeps every write in memory, in order"""

    def __init__(self):
        super().__init__()
        self.writes: List[str] = []

    def write(self, text: str) -> None:
        self.writes.append(text)

    @property
    def text(self) -> str:
        return "".join(self.writes)

    @property
    def lines(self) -> List[str]:
        return self.text.splitlines()
