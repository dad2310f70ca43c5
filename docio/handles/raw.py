"""Handles for unconverted payloads: bytes, text and binary streams."""

from __future__ import annotations

import io
import logging
import shutil
from typing import BinaryIO

from docio import DEFAULT_ENCODING
from docio.errors import ContentIOError, IllegalStateError
from docio.format import Format
from docio.handles.base import BaseHandle, BufferableHandle, ContentHandle, OutputStreamSender

logger = logging.getLogger(__name__)


class BytesHandle(BaseHandle, OutputStreamSender, BufferableHandle, ContentHandle[bytes]):
    """Holds a document payload as bytes, in any format.

    Usage:
        store.write(doc_id, BytesHandle().with_content(png_bytes))
        data = store.read(doc_id, BytesHandle(), 9, 10).get()
    """

    def __init__(self, content: bytes | None = None, format: Format = Format.BINARY) -> None:
        super().__init__()
        self._format = format
        self._set_resendable(True)
        self._content: bytes | None = None
        self.set(content)

    def get(self) -> bytes | None:
        return self._content

    def set(self, content: bytes | bytearray | memoryview | None) -> None:
        self._content = bytes(content) if content is not None else None

    def with_content(self, content: bytes | None) -> BytesHandle:
        self.set(content)
        return self

    def with_format(self, format: Format) -> BytesHandle:
        self.set_format(format)
        return self

    def with_mimetype(self, mimetype: str | None) -> BytesHandle:
        self.set_mimetype(mimetype)
        return self

    def from_buffer(self, buffer: bytes | None) -> None:
        self.set(buffer if buffer else None)

    def to_buffer(self) -> bytes | None:
        return self._content

    def receive_as(self) -> type:
        return bytes

    def receive_content(self, content: bytes) -> None:
        self.set(content)

    def send_content(self) -> bytes:
        if self._content is None:
            raise IllegalStateError("No bytes to write")
        return self._content

    def write(self, out: BinaryIO) -> None:
        out.write(self.send_content())

    def __str__(self) -> str:
        return self._content.decode(DEFAULT_ENCODING, errors="replace") if self._content else ""


class StringHandle(BaseHandle, BufferableHandle, ContentHandle[str]):
    """Holds a document payload as text, encoded as UTF-8 on the wire."""

    def __init__(self, content: str | None = None, format: Format = Format.TEXT) -> None:
        super().__init__()
        self._format = format
        self._set_resendable(True)
        self._content = content

    def get(self) -> str | None:
        return self._content

    def set(self, content: str | None) -> None:
        self._content = content

    def with_content(self, content: str | None) -> StringHandle:
        self.set(content)
        return self

    def with_format(self, format: Format) -> StringHandle:
        self.set_format(format)
        return self

    def with_mimetype(self, mimetype: str | None) -> StringHandle:
        self.set_mimetype(mimetype)
        return self

    def from_buffer(self, buffer: bytes | None) -> None:
        if not buffer:
            self._content = None
        else:
            self.receive_content(buffer)

    def to_buffer(self) -> bytes | None:
        return self._content.encode(DEFAULT_ENCODING) if self._content is not None else None

    def receive_as(self) -> type:
        return bytes

    def receive_content(self, content: bytes) -> None:
        try:
            self._content = content.decode(DEFAULT_ENCODING)
        except UnicodeDecodeError as e:
            logger.exception("Failed to decode text read from document")
            raise ContentIOError(f"Document is not valid {DEFAULT_ENCODING} text") from e

    def send_content(self) -> bytes:
        if self._content is None:
            raise IllegalStateError("No string to write")
        return self._content.encode(DEFAULT_ENCODING)

    def __str__(self) -> str:
        return self._content or ""


class InputStreamHandle(BaseHandle, OutputStreamSender, BufferableHandle, ContentHandle[BinaryIO]):
    """Holds a binary stream. The caller owns (and closes) a received stream.

    Not resendable: writing consumes the stream and empties the handle.
    A failed drain or copy also empties it.
    """

    def __init__(self, content: BinaryIO | None = None, format: Format = Format.BINARY) -> None:
        super().__init__()
        self._format = format
        self._content = content

    def get(self) -> BinaryIO | None:
        return self._content

    def set(self, content: BinaryIO | None) -> None:
        self._content = content

    def with_content(self, content: BinaryIO | None) -> InputStreamHandle:
        self.set(content)
        return self

    def with_mimetype(self, mimetype: str | None) -> InputStreamHandle:
        self.set_mimetype(mimetype)
        return self

    def from_buffer(self, buffer: bytes | None) -> None:
        self._content = io.BytesIO(buffer) if buffer else None

    def to_buffer(self) -> bytes | None:
        """Drain the stream into bytes; the content becomes a re-readable copy."""
        if self._content is None:
            return None
        stream, self._content = self._content, None
        try:
            data = stream.read()
        except OSError as e:
            logger.exception("Failed to read content stream")
            raise ContentIOError(f"Failed to read content stream: {e}") from e
        finally:
            stream.close()
        self._content = io.BytesIO(data)
        return data

    def receive_as(self) -> type:
        return BinaryIO

    def receive_content(self, content: BinaryIO) -> None:
        self._content = content

    def send_content(self) -> OutputStreamSender:
        if self._content is None:
            raise IllegalStateError("No stream to write")
        return self

    def write(self, out: BinaryIO) -> None:
        if self._content is None:
            raise IllegalStateError("No stream to write")
        stream, self._content = self._content, None
        try:
            shutil.copyfileobj(stream, out)
        except OSError as e:
            logger.exception("Failed to copy content stream")
            raise ContentIOError(f"Failed to copy content stream: {e}") from e
        finally:
            stream.close()
