"""
Unmarshaller - parses XML text back into bound pydantic models.

Security features:
  - DOCTYPE declarations rejected (no entity expansion)
  - Input size limit (prevents OOM from crafted payloads)
  - Only registered root elements are accepted
  - Nesting depth limit (no unbounded recursion)

Unknown child elements and attributes are ignored.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, TextIO

from pydantic import ValidationError

from docio._bind.spec import (
    DOCTYPE_MARKER, MAX_DEPTH, MAX_DOCUMENT_SIZE, READ_CHUNK_SIZE,
    BindingError,
)

if TYPE_CHECKING:
    from docio._bind.context import BindingContext, Layout, Slot


class Unmarshaller:
    """Not safe for concurrent use; one per handle."""

    def __init__(self, context: BindingContext, max_size: int = MAX_DOCUMENT_SIZE) -> None:
        self._context = context
        self._max_size = max_size

    def unmarshal(self, source: str | TextIO) -> Any:
        """Parse XML from a string or a text stream."""
        text = source if isinstance(source, str) else self._read_text(source)
        if len(text) > self._max_size:
            raise BindingError(f"Document exceeds maximum {self._max_size} characters")
        if DOCTYPE_MARKER in text:
            raise BindingError("DOCTYPE declarations are not allowed")
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise BindingError(f"Malformed XML: {e}") from e
        return self.from_element(root)

    def _read_text(self, source: TextIO) -> str:
        chunks: list[str] = []
        total = 0
        while True:
            chunk = source.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > self._max_size:
                raise BindingError(f"Document exceeds maximum {self._max_size} characters")
            chunks.append(chunk)
        return "".join(chunks)

    def from_element(self, el: ET.Element) -> Any:
        tp = self._context.root_type_for(el.tag)
        if tp is None:
            expected = ", ".join(f"<{self._context.root_name_of(t)}>" for t in self._context.root_types)
            raise BindingError(f"Unexpected root element <{el.tag}>, expected one of {expected}")
        layout = self._context.layout_of(tp)
        data = self._read(el, layout, layout.root, 0)
        try:
            return tp.model_validate(data)
        except ValidationError as e:
            raise BindingError(f"Cannot construct {tp.__name__}: {e}") from e

    def _read(self, el: ET.Element, layout: Layout, shape: str, depth: int) -> dict[str, Any]:
        if depth > MAX_DEPTH:
            raise BindingError(f"Nesting exceeds maximum depth {MAX_DEPTH}")
        data: dict[str, Any] = {}
        for slot in layout.shapes[shape]:
            if slot.is_attribute:
                raw = el.get(slot.key)
                if raw is not None:
                    data[slot.key] = raw
                continue

            values = [self._read_value(child, slot, layout, depth) for child in el if child.tag == slot.key]
            if slot.is_list:
                if values:
                    data[slot.key] = values
            elif values:
                data[slot.key] = values[-1]
        return data

    def _read_value(self, child: ET.Element, slot: Slot, layout: Layout, depth: int) -> Any:
        if slot.ref is not None:
            return self._read(child, layout, slot.ref, depth + 1)
        return child.text or ""
