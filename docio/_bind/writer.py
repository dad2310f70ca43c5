"""
Marshaller - serializes bound pydantic models to XML.

Output: XML declaration + root element, in the configured encoding,
indented when FORMATTED_OUTPUT is set. Fields set to None are omitted.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, BinaryIO

from pydantic import BaseModel
from pydantic_core import PydanticSerializationError

from docio._bind.spec import (
    DEFAULT_ENCODING, ENCODING, FORMATTED_OUTPUT, INDENT, MAX_DEPTH,
    BindingError, to_text,
)

if TYPE_CHECKING:
    from docio._bind.context import BindingContext, Layout


def _check_depth(obj: BaseModel) -> None:
    """Reject model trees nested deeper than MAX_DEPTH (cycles included)."""
    pending: list[tuple[Any, int]] = [(obj, 0)]
    while pending:
        value, depth = pending.pop()
        if isinstance(value, BaseModel):
            if depth > MAX_DEPTH:
                raise BindingError(f"Nesting exceeds maximum depth {MAX_DEPTH}")
            pending.extend((getattr(value, name), depth + 1) for name in type(value).model_fields)
        elif isinstance(value, (list, tuple)):
            pending.extend((item, depth) for item in value)


class Marshaller:
    """Not safe for concurrent use; one per handle."""

    def __init__(self, context: BindingContext) -> None:
        self._context = context
        self._properties: dict[str, Any] = {
            FORMATTED_OUTPUT: False,
            ENCODING: DEFAULT_ENCODING,
        }

    def set_property(self, name: str, value: Any) -> None:
        if name not in self._properties:
            raise BindingError(f"Unknown marshaller property: {name!r}")
        if name == ENCODING:
            try:
                "".encode(value)
            except (LookupError, TypeError) as e:
                raise BindingError(f"Unknown encoding: {value!r}") from e
        self._properties[name] = value

    def get_property(self, name: str) -> Any:
        if name not in self._properties:
            raise BindingError(f"Unknown marshaller property: {name!r}")
        return self._properties[name]

    def marshal(self, obj: Any, out: BinaryIO) -> None:
        """Write ``obj`` as an XML document to a binary sink."""
        root = self.to_element(obj)
        encoding = self._properties[ENCODING]
        if self._properties[FORMATTED_OUTPUT]:
            ET.indent(root, space=INDENT)
        # Expat folds a literal CR into LF; a character reference survives
        body = ET.tostring(root, encoding="unicode").replace("\r", "&#13;")
        text = f"<?xml version='1.0' encoding='{encoding}'?>\n{body}"
        if self._properties[FORMATTED_OUTPUT]:
            text += "\n"
        out.write(text.encode(encoding, "xmlcharrefreplace"))

    def to_element(self, obj: Any) -> ET.Element:
        if obj is None:
            raise BindingError("Cannot marshal None")
        tp = type(obj)
        name = self._context.root_name_of(tp)
        layout = self._context.layout_of(tp)
        _check_depth(obj)
        try:
            data = obj.model_dump(mode="json", by_alias=True, exclude_none=True, warnings="error")
        except PydanticSerializationError as e:
            raise BindingError(f"Cannot serialize {tp.__name__}: {e}") from e
        return self._build(name, data, layout, layout.root)

    def _build(self, tag: str, data: dict[str, Any], layout: Layout, shape: str) -> ET.Element:
        el = ET.Element(tag)
        for slot in layout.shapes[shape]:
            value = data.get(slot.key)
            if value is None:
                continue
            if slot.is_attribute:
                el.set(slot.key, to_text(value))
                continue
            for item in (value if slot.is_list else (value,)):
                if item is None:
                    continue
                if slot.ref is not None:
                    el.append(self._build(slot.key, item, layout, slot.ref))
                else:
                    ET.SubElement(el, slot.key).text = to_text(item)
        return el
