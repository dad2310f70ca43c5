"""
Internal XML binding engine - the conversion context behind BindingHandle.

Pydantic models are marshalled to XML and unmarshalled back through a
BindingContext that knows the registered root classes. This is an
internal dependency - handles expose it only as an opaque context.

Properties: FORMATTED_OUTPUT (bool), ENCODING ("UTF-8")
"""

from docio._bind.spec import BindingError, ENCODING, FORMATTED_OUTPUT, xml_attribute
from docio._bind.context import BindingContext
from docio._bind.writer import Marshaller
from docio._bind.reader import Unmarshaller
