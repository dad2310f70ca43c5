"""
ElementHandle - an XML document held as an ElementTree element.

Used for structured side-channel documents such as document metadata,
which callers query by slash-separated paths:

    handle.evaluate("metadata/properties/size")  ->  "815"
"""

from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET
from typing import BinaryIO

from docio import DEFAULT_ENCODING
from docio._bind.spec import DOCTYPE_MARKER, MAX_DOCUMENT_SIZE
from docio.errors import ContentIOError, IllegalStateError, InvalidArgumentError
from docio.format import Format
from docio.handles.base import BaseHandle, BufferableHandle, ContentHandle, OutputStreamSender

logger = logging.getLogger(__name__)


class ElementHandle(BaseHandle, OutputStreamSender, BufferableHandle, ContentHandle[ET.Element]):
    """Handle for an XML element tree, pinned to the XML format."""

    def __init__(self, content: ET.Element | None = None) -> None:
        super().__init__()
        self._format = Format.XML
        self._set_resendable(True)
        self._content = content

    def get(self) -> ET.Element | None:
        return self._content

    def set(self, content: ET.Element | None) -> None:
        self._content = content

    def with_content(self, content: ET.Element | None) -> ElementHandle:
        self.set(content)
        return self

    def set_format(self, format: Format) -> None:
        if format is not Format.XML:
            raise InvalidArgumentError("ElementHandle supports the XML format only")

    def evaluate(self, path: str) -> str | None:
        """Text of the first element at ``path``; the root name may lead the path.

        Returns None when nothing matches or there is no content.
        """
        root = self._content
        if root is None:
            return None
        steps = [step for step in path.strip("/").split("/") if step]
        if steps and steps[0] == root.tag:
            steps = steps[1:]
        if not steps:
            return root.text or ""
        return root.findtext("/".join(steps))

    def from_buffer(self, buffer: bytes | None) -> None:
        if not buffer:
            self._content = None
        else:
            self.receive_content(io.BytesIO(buffer))

    def to_buffer(self) -> bytes | None:
        if self._content is None:
            return None
        buffer = io.BytesIO()
        self.write(buffer)
        return buffer.getvalue()

    def receive_as(self) -> type:
        return BinaryIO

    def receive_content(self, content: BinaryIO) -> None:
        try:
            data = content.read(MAX_DOCUMENT_SIZE + 1)
            if len(data) > MAX_DOCUMENT_SIZE:
                raise ContentIOError(f"Document exceeds maximum {MAX_DOCUMENT_SIZE} bytes")
            if DOCTYPE_MARKER.encode("ascii") in data:
                raise ContentIOError("DOCTYPE declarations are not allowed")
            self._content = ET.fromstring(data)
        except (ET.ParseError, OSError) as e:
            logger.exception("Failed to parse XML read from document")
            raise ContentIOError(f"Failed to parse XML: {e}") from e
        finally:
            try:
                content.close()
            except OSError as e:
                logger.debug("Ignoring error while closing content stream: %s", e)

    def send_content(self) -> OutputStreamSender:
        if self._content is None:
            raise IllegalStateError("No element to write")
        return self

    def write(self, out: BinaryIO) -> None:
        if self._content is None:
            raise IllegalStateError("No element to write")
        ET.ElementTree(self._content).write(out, encoding=DEFAULT_ENCODING, xml_declaration=True)

    def __str__(self) -> str:
        buffer = self.to_buffer()
        return buffer.decode(DEFAULT_ENCODING) if buffer is not None else ""
