"""
docio - typed content handles for document store I/O.

Architecture:
    Handles:   docio.handles.*  (one content value, one pinned wire format)
    Binding:   docio._bind      (pydantic model <-> XML conversion context)
    Facade:    docio.store      (local store: write / read / range read / metadata)

A handle converts between an application value and the UTF-8 byte
payload exchanged with a document store. A factory resolves a registered
type to a fresh handle sharing one conversion context.
"""

__version__ = "0.1.0"

DEFAULT_ENCODING = "UTF-8"

# Default mimetypes per wire format (see docio.format.Format)
MIMETYPE_XML = "application/xml"
MIMETYPE_JSON = "application/json"
MIMETYPE_TEXT = "text/plain"
MIMETYPE_BINARY = "application/octet-stream"

# Store constants
STORE_HOME_ENV = "DOCIO_HOME"
STORE_MAX_DOCUMENT_BYTES = 100 * 1024 * 1024  # 100 MB
STORE_FILTER_CAPABILITIES = "none"  # no content filters installed locally
