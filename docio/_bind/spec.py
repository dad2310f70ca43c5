"""
Binding rules v2.0.

Bound types are pydantic models. The XML layout of a model is read from
its JSON schema (``model_json_schema``); values go out through
``model_dump(mode="json")`` and come back through ``model_validate``.

Mapping:
    model instance              -> element named after the class
                                   (``__xml_root__`` overrides, else
                                   first letter lower-cased)
    scalar field                -> child element with text, or an
                                   attribute when declared with
                                   ``xml_attribute()``
    nested model field          -> child element with the field name
    list[T] field               -> one child element per item
    field alias                 -> element/attribute name
    Optional field set to None  -> omitted

Scalar text is the JSON-mode value pydantic produces ("true"/"false" for
booleans). Text and attribute values must be XML 1.0 characters;
carriage returns are written as ``&#13;`` so they survive parsing.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import Field
from pydantic_core import PydanticUndefined

# Marshaller property names
FORMATTED_OUTPUT = "formatted_output"
ENCODING = "encoding"

DEFAULT_ENCODING = "UTF-8"
INDENT = "  "

# Field schema key marking attributes
META_KIND = "xml"
ROOT_NAME_ATTR = "__xml_root__"

# Safety limits
MAX_DOCUMENT_SIZE = 16 * 1024 * 1024  # 16MB of XML text per unmarshal
MAX_DEPTH = 128                       # nested model elements below the root
READ_CHUNK_SIZE = 64 * 1024
MAX_ROOT_TYPES = 1_000
DOCTYPE_MARKER = "<!DOCTYPE"

_XML_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
# Complement of the XML 1.0 Char production
_NON_XML_CHAR_RE = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


class BindingError(Exception):
    """A value could not be bound to or from XML."""


def xml_attribute(default: Any = PydanticUndefined, **kwargs: Any) -> Any:
    """Declare a scalar model field that binds to an XML attribute.

        class Product(BaseModel):
            sku: str = xml_attribute()
            unit: str = xml_attribute(default="cm")
    """
    return Field(default, json_schema_extra={META_KIND: "attribute"}, **kwargs)


def root_name_for(cls: type) -> str:
    """Element name used for a root class."""
    name = getattr(cls, ROOT_NAME_ATTR, None) or (cls.__name__[:1].lower() + cls.__name__[1:])
    if not _XML_NAME_RE.match(name):
        raise BindingError(f"Invalid XML element name for {cls.__name__}: {name!r}")
    return name


def is_valid_name(name: str) -> bool:
    return bool(_XML_NAME_RE.match(name))


def to_text(value: Any) -> str:
    """Element text or attribute value for a JSON-mode scalar."""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    bad = _NON_XML_CHAR_RE.search(text)
    if bad:
        raise BindingError(f"Character {bad.group()!r} is not allowed in XML")
    return text
