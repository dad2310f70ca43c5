"""
Handle protocol shared by every content handle.

The store talks to handles only through this protocol:

    outbound:  send_content() -> bytes | OutputStreamSender
    inbound:   receive_as()   -> bytes | BinaryIO   (what the handle wants)
               receive_content(payload)

Capability interfaces (BufferableHandle, OutputStreamSender, ContentHandle,
ContentHandleFactory) are mixed into concrete handles.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Generic, TypeVar

from docio.format import Format

C = TypeVar("C")


class OutputStreamSender(ABC):
    """Something that can write its content to a binary sink."""

    @abstractmethod
    def write(self, out: BinaryIO) -> None:
        ...


class BufferableHandle(ABC):
    """A handle whose content can be held as an independent byte buffer."""

    @abstractmethod
    def from_buffer(self, buffer: bytes | None) -> None:
        ...

    @abstractmethod
    def to_buffer(self) -> bytes | None:
        ...


class ContentHandle(ABC, Generic[C]):
    """A handle exposing one typed content value."""

    @abstractmethod
    def get(self) -> C | None:
        ...

    @abstractmethod
    def set(self, content: C | None) -> None:
        ...


class ContentHandleFactory(ABC):
    """Resolves a registered type to a new handle for values of that type."""

    @abstractmethod
    def get_handled_classes(self) -> tuple[type, ...]:
        ...

    @abstractmethod
    def is_handled(self, tp: type) -> bool:
        ...

    @abstractmethod
    def new_handle(self, tp: type[C]) -> ContentHandle[C] | None:
        ...


class BaseHandle:
    """Format, mimetype and resend state common to all handles."""

    def __init__(self) -> None:
        self._format = Format.UNKNOWN
        self._mimetype: str | None = None
        self._resendable = False

    @property
    def format(self) -> Format:
        return self._format

    def set_format(self, format: Format) -> None:
        self._format = format

    @property
    def mimetype(self) -> str | None:
        return self._mimetype

    def set_mimetype(self, mimetype: str | None) -> None:
        self._mimetype = mimetype

    @property
    def resendable(self) -> bool:
        """True when send_content() can be called again after a failed write."""
        return self._resendable

    def _set_resendable(self, resendable: bool) -> None:
        self._resendable = resendable

    def receive_as(self) -> type:
        """``bytes`` or ``BinaryIO`` - the payload shape receive_content() takes."""
        raise NotImplementedError(f"{type(self).__name__} cannot receive content")

    def receive_content(self, content: Any) -> None:
        raise NotImplementedError(f"{type(self).__name__} cannot receive content")

    def send_content(self) -> bytes | OutputStreamSender:
        raise NotImplementedError(f"{type(self).__name__} cannot send content")
