"""
Metadata document - a side-channel description of a stored document.

Layout:
    <metadata uri="/path/doc.png">
      <properties>
        <content-type>image/png</content-type>
        <filter-capabilities>none</filter-capabilities>
        <size>815</size>
      </properties>
    </metadata>

Properties are extracted at write time when the store's metadata
extraction is PROPERTIES; with NONE the properties element is empty.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from enum import Enum

from docio import DEFAULT_ENCODING, STORE_FILTER_CAPABILITIES

METADATA_ROOT = "metadata"
PROPERTIES = "properties"

PROP_CONTENT_TYPE = "content-type"
PROP_FILTER_CAPABILITIES = "filter-capabilities"
PROP_SIZE = "size"


class MetadataExtraction(Enum):
    NONE = "none"
    PROPERTIES = "properties"


def extract_properties(mimetype: str, size: int) -> dict[str, str]:
    """Properties recorded for a document of ``size`` bytes."""
    return {
        PROP_CONTENT_TYPE: mimetype,
        PROP_FILTER_CAPABILITIES: STORE_FILTER_CAPABILITIES,
        PROP_SIZE: str(size),
    }


def build_metadata_document(uri: str, properties: dict[str, str]) -> ET.Element:
    root = ET.Element(METADATA_ROOT, {"uri": uri})
    props = ET.SubElement(root, PROPERTIES)
    for name, value in properties.items():
        ET.SubElement(props, name).text = value
    return root


def metadata_to_bytes(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding=DEFAULT_ENCODING, xml_declaration=True)


def parse_properties(root: ET.Element) -> dict[str, str]:
    """Property name -> text of a metadata document."""
    props = root.find(PROPERTIES)
    if props is None:
        return {}
    return {child.tag: child.text or "" for child in props}
