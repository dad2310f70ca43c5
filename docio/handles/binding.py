"""
BindingHandle - round-trips a pydantic model instance to and from an XML
document.

The content class must be registered (directly, or as a model nested
inside a registered root) with the BindingContext the handle is built
with. The wire format is pinned to XML; the payload is UTF-8.

Usage:
    factory = BindingHandle.new_factory(Product)
    handle = factory.new_handle(Product).with_content(Product(name="widget"))
    payload = handle.to_buffer()

    handle.from_buffer(payload)
    product = handle.get(Product)
"""

from __future__ import annotations

import codecs
import io
import logging
from typing import Any, BinaryIO, TypeVar

from docio import DEFAULT_ENCODING
from docio._bind import ENCODING, FORMATTED_OUTPUT, BindingContext, BindingError, Marshaller, Unmarshaller
from docio.errors import ContentIOError, IllegalStateError, InvalidArgumentError, TypeMismatchError
from docio.format import Format
from docio.handles.base import (
    BaseHandle, BufferableHandle, ContentHandle, ContentHandleFactory, OutputStreamSender,
)

logger = logging.getLogger(__name__)

C = TypeVar("C")
T = TypeVar("T")


def _close_quietly(stream: Any) -> None:
    """Close an input stream; a failing close never masks the outcome."""
    try:
        stream.close()
    except OSError as e:
        logger.debug("Ignoring error while closing content stream: %s", e)


class BindingHandle(BaseHandle, OutputStreamSender, BufferableHandle, ContentHandle[C]):
    """Handle for one bound model instance, pinned to the XML format.

    Not safe for concurrent use: the content slot and the cached
    marshaller/unmarshaller are per-instance mutable state.
    """

    @staticmethod
    def new_factory(*classes: type) -> ContentHandleFactory | None:
        """Create a factory for the given classes with a new binding context.

        Returns None when no classes are given.
        """
        if not classes:
            return None
        try:
            context = BindingContext.new_instance(*classes)
        except BindingError as e:
            raise InvalidArgumentError(f"Cannot bind classes: {e}") from e
        return _BindingHandleFactory(context, classes)

    @staticmethod
    def new_factory_for_context(
        context: BindingContext | None, *classes: type,
    ) -> ContentHandleFactory | None:
        """Create a factory sharing a caller-configured binding context.

        Returns None when the context or the classes are missing.
        """
        if context is None or not classes:
            return None
        return _BindingHandleFactory(context, classes)

    def __init__(self, context: BindingContext) -> None:
        super().__init__()
        if context is None:
            raise InvalidArgumentError("None binding context for converting classes")
        if not isinstance(context, BindingContext):
            raise InvalidArgumentError(f"Not a binding context: {type(context).__name__}")
        self._format = Format.XML
        self._set_resendable(True)
        self._context = context
        self._content: C | None = None
        self._marshaller: Marshaller | None = None
        self._unmarshaller: Unmarshaller | None = None

    @property
    def context(self) -> BindingContext:
        return self._context

    # --- content ---

    def get(self, as_type: type[T] | None = None) -> Any:
        """Return the content, optionally checked against ``as_type``.

        Raises TypeMismatchError when the content is not an instance of
        ``as_type``. Empty content is returned as None without a check.
        """
        if as_type is None or self._content is None:
            return self._content
        if not isinstance(as_type, type):
            raise InvalidArgumentError(f"Cannot cast content to {as_type!r}")
        if not isinstance(self._content, as_type):
            raise TypeMismatchError(
                f"Cannot cast {type(self._content).__qualname__} to {as_type.__qualname__}"
            )
        return self._content

    def set(self, content: C | None) -> None:
        self._content = content

    def with_content(self, content: C | None) -> BindingHandle[C]:
        self.set(content)
        return self

    # --- format / mimetype ---

    def set_format(self, format: Format) -> None:
        """Only XML is accepted; setting XML again is a no-op."""
        if format is not Format.XML:
            raise InvalidArgumentError("BindingHandle supports the XML format only")

    def with_mimetype(self, mimetype: str | None) -> BindingHandle[C]:
        self.set_mimetype(mimetype)
        return self

    # --- buffers ---

    def from_buffer(self, buffer: bytes | None) -> None:
        """Unmarshal content from UTF-8 XML; an empty buffer clears the content."""
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

    def __str__(self) -> str:
        buffer = self.to_buffer()
        return buffer.decode(DEFAULT_ENCODING) if buffer is not None else ""

    def __repr__(self) -> str:
        return f"BindingHandle({self._context!r}, content={type(self._content).__name__})"

    # --- converters ---

    def get_unmarshaller(self, reuse: bool = True) -> Unmarshaller:
        """Return the unmarshaller, creating a fresh one unless ``reuse``."""
        if not reuse or self._unmarshaller is None:
            self._unmarshaller = self._context.create_unmarshaller()
        return self._unmarshaller

    def get_marshaller(self, reuse: bool = True) -> Marshaller:
        """Return the marshaller (indented UTF-8), creating a fresh one unless ``reuse``."""
        if not reuse or self._marshaller is None:
            marshaller = self._context.create_marshaller()
            marshaller.set_property(FORMATTED_OUTPUT, True)
            marshaller.set_property(ENCODING, DEFAULT_ENCODING)
            self._marshaller = marshaller
        return self._marshaller

    # --- store protocol ---

    def receive_as(self) -> type:
        return BinaryIO

    def receive_content(self, content: BinaryIO) -> None:
        """Unmarshal from a binary stream of UTF-8 XML; always closes ``content``."""
        try:
            reader = codecs.getreader(DEFAULT_ENCODING)(content)
            self._content = self.get_unmarshaller().unmarshal(reader)
        except (BindingError, UnicodeDecodeError, OSError, RecursionError) as e:
            logger.exception("Failed to unmarshal object read from document")
            self._unmarshaller = None
            raise ContentIOError(f"Failed to unmarshal object: {e}") from e
        finally:
            _close_quietly(content)

    def send_content(self) -> OutputStreamSender:
        if self._content is None:
            raise IllegalStateError("No object to write")
        return self

    def write(self, out: BinaryIO) -> None:
        """Marshal the content to a binary sink."""
        if self._content is None:
            raise IllegalStateError("No object to write")
        try:
            self.get_marshaller().marshal(self._content, out)
        except (BindingError, OSError, RecursionError) as e:
            logger.exception("Failed to marshal object for writing to document")
            self._marshaller = None
            raise ContentIOError(f"Failed to marshal {type(self._content).__name__}: {e}") from e


class _BindingHandleFactory(ContentHandleFactory):
    """Immutable class -> BindingHandle registry over one shared context."""

    def __init__(self, context: BindingContext, classes: tuple[type, ...]) -> None:
        self._context = context
        self._classes = tuple(classes)
        self._class_set = frozenset(self._classes)

    @property
    def context(self) -> BindingContext:
        return self._context

    def get_handled_classes(self) -> tuple[type, ...]:
        return self._classes

    def is_handled(self, tp: type) -> bool:
        return tp in self._class_set

    def new_handle(self, tp: type[C]) -> BindingHandle[C] | None:
        return BindingHandle(self._context) if self.is_handled(tp) else None
