"""Wire formats a handle can be pinned to."""

from __future__ import annotations

from enum import Enum

from docio import MIMETYPE_BINARY, MIMETYPE_JSON, MIMETYPE_TEXT, MIMETYPE_XML


class Format(Enum):
    XML = "xml"
    JSON = "json"
    TEXT = "text"
    BINARY = "binary"
    UNKNOWN = "unknown"

    @property
    def default_mimetype(self) -> str | None:
        return _DEFAULT_MIMETYPES.get(self)


_DEFAULT_MIMETYPES = {
    Format.XML: MIMETYPE_XML,
    Format.JSON: MIMETYPE_JSON,
    Format.TEXT: MIMETYPE_TEXT,
    Format.BINARY: MIMETYPE_BINARY,
}
