"""
Content handles - adapters between an application value and the byte
payload a document store exchanges.

    BindingHandle   pydantic models as XML (with a factory)
    BytesHandle     raw bytes, any format
    StringHandle    text, any format
    InputStreamHandle  a binary stream, read lazily by the caller
    ElementHandle   an XML element tree, path-queryable
"""

from docio.handles.base import (
    BaseHandle,
    BufferableHandle,
    ContentHandle,
    ContentHandleFactory,
    OutputStreamSender,
)
from docio._bind import xml_attribute
from docio.handles.binding import BindingHandle
from docio.handles.raw import BytesHandle, InputStreamHandle, StringHandle
from docio.handles.tree import ElementHandle

__all__ = [
    "BaseHandle",
    "BufferableHandle",
    "ContentHandle",
    "ContentHandleFactory",
    "OutputStreamSender",
    "BindingHandle",
    "BytesHandle",
    "InputStreamHandle",
    "StringHandle",
    "ElementHandle",
    "xml_attribute",
]
