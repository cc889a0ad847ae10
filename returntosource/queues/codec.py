"""
Header Codec
Serializes the header map into a message's extension and back

Headers are stored the way the NServiceBus MSMQ transport stores them:
an XML ``ArrayOfHeaderInfo`` document with one ``HeaderInfo`` per entry.
"""

import re
import xml.etree.ElementTree as ET
from typing import Dict

import structlog

from returntosource.errors import HeaderCodecError
from returntosource.models.message import Message

logger = structlog.get_logger(__name__)

ROOT_TAG = "ArrayOfHeaderInfo"
ENTRY_TAG = "HeaderInfo"
KEY_TAG = "Key"
VALUE_TAG = "Value"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
XSD_NS = "http://www.w3.org/2001/XMLSchema"

# Characters XML 1.0 cannot carry, even as character references
_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


class HeaderCodec:
    """Reads and writes the header map carried in Message.extension"""

    encoding = "utf-8"

    def extract_headers(self, message: Message) -> Dict[str, str]:
        """
        Decode the header map from a message

        Args:
            message: Message whose extension holds the headers

        Returns:
            Ordered header map (empty if the extension is empty)

        Raises:
            HeaderCodecError: If the extension is not a header document
        """
        return self.decode(message.extension)

    def save_headers(self, headers: Dict[str, str], message: Message) -> None:
        """
        Encode headers into the message's extension, in place

        Args:
            headers: Header map to store
            message: Message to update
        """
        message.extension = self.encode(headers)

    def encode(self, headers: Dict[str, str]) -> bytes:
        """
        Serialize a header map to extension bytes

        Raises:
            HeaderCodecError: If a key or value holds characters XML cannot carry
        """
        root = ET.Element(ROOT_TAG)
        root.set("xmlns:xsi", XSI_NS)
        root.set("xmlns:xsd", XSD_NS)

        for key, value in headers.items():
            for text in (key, value):
                if _INVALID_XML_CHARS.search(text):
                    raise HeaderCodecError(f"Header {key!r} contains characters not allowed in XML")

            entry = ET.SubElement(root, ENTRY_TAG)
            ET.SubElement(entry, KEY_TAG).text = key
            ET.SubElement(entry, VALUE_TAG).text = value

        payload = ET.tostring(root, encoding=self.encoding, xml_declaration=True)

        # Parsers normalize a raw CR to LF, a character reference survives
        return payload.replace(b"\r", b"&#13;")

    def decode(self, extension: bytes) -> Dict[str, str]:
        """
        Deserialize extension bytes to a header map

        Raises:
            HeaderCodecError: If the payload is malformed
        """
        # Older senders pad the extension with NUL bytes
        payload = bytes(extension).rstrip(b"\x00")
        if not payload.strip():
            return {}

        try:
            root = ET.fromstring(payload)
        except ET.ParseError as e:
            raise HeaderCodecError(f"Invalid header document: {e}") from e

        if root.tag != ROOT_TAG:
            raise HeaderCodecError(f"Unexpected root element: {root.tag}")

        headers: Dict[str, str] = {}
        for entry in root.findall(ENTRY_TAG):
            key = entry.findtext(KEY_TAG)
            if key is None:
                logger.warning("Skipping header entry without key")
                continue
            headers[key] = entry.findtext(VALUE_TAG) or ""

        return headers
