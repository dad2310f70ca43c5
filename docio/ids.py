"""Document identifiers used by the store facade."""

from __future__ import annotations

import re
from dataclasses import dataclass

from docio.errors import InvalidArgumentError

# Absolute, slash-separated path; no empty, "." or ".." segments
_URI_RE = re.compile(r"^/(?:[^/\x00]+/)*[^/\x00]+$")


@dataclass
class DocumentIdentifier:
    """Location of a document in the store plus an optional mimetype.

    Usage:
        doc_id = DocumentIdentifier("/test/binary-sample.png")
        doc_id.mimetype = "image/png"
    """

    uri: str
    mimetype: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.uri, str) or not _URI_RE.match(self.uri):
            raise InvalidArgumentError(f"Invalid document uri: {self.uri!r}")
        if any(part in (".", "..") for part in self.uri.split("/")):
            raise InvalidArgumentError(f"Relative segments not allowed in uri: {self.uri!r}")

    def with_mimetype(self, mimetype: str) -> DocumentIdentifier:
        self.mimetype = mimetype
        return self
