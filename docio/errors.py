"""
Error taxonomy shared by handles, factories and the store.

Callers depend on these kinds rather than on converter internals:
every marshal/unmarshal/encoding failure surfaces as ContentIOError
with the original exception chained as ``__cause__``.
"""

from __future__ import annotations


class DocIOError(Exception):
    """Base class for docio errors."""


class InvalidArgumentError(DocIOError, ValueError):
    """Missing construction input or an attempt to change a pinned format."""


class TypeMismatchError(DocIOError, TypeError):
    """Content requested as a class it is not an instance of."""


class IllegalStateError(DocIOError, RuntimeError):
    """Operation not possible in the handle's current state."""


class ContentIOError(DocIOError):
    """Content could not be converted to or from its wire payload."""


class ResourceNotFoundError(DocIOError):
    """The store holds no document for the identifier."""
