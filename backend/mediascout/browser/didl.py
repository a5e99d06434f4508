"""
SOAP Browse request building and DIDL-Lite response parsing.

A ContentDirectory Browse response wraps the DIDL-Lite document as escaped
text inside <Result>. Some servers embed the DIDL elements directly; both
shapes are accepted. Field extraction:
- <item> is a leaf, <container> a directory
- <dc:title> is the display name; entries without one are dropped
- for items, <res> text is the playable URL and its size / duration /
  protocolInfo attributes become FileMetadata
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional, List, Union
from xml.sax.saxutils import escape

from ..core.exceptions import SoapFaultError, DidlParseError
from ..scanner.models import DirectoryEntry, FileMetadata

BROWSE_ACTION = "urn:schemas-upnp-org:service:ContentDirectory:1#Browse"

FAULT_MARKERS = ("soap:Fault", "SOAP-ENV:Fault")

BROWSE_ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
    <s:Body>
        <u:Browse xmlns:u="urn:schemas-upnp-org:service:ContentDirectory:1">
            <ObjectID>{object_id}</ObjectID>
            <BrowseFlag>BrowseDirectChildren</BrowseFlag>
            <Filter>*</Filter>
            <StartingIndex>0</StartingIndex>
            <RequestedCount>{count}</RequestedCount>
            <SortCriteria></SortCriteria>
        </u:Browse>
    </s:Body>
</s:Envelope>"""


@dataclass
class DidlObject:
    """An <item> or <container> from a DIDL-Lite document."""
    title: str
    is_container: bool
    object_id: Optional[str] = None
    url: Optional[str] = None
    metadata: Optional[FileMetadata] = None

    def to_entry(self) -> DirectoryEntry:
        return DirectoryEntry(
            name=self.title,
            is_container=self.is_container,
            url=self.url,
            metadata=self.metadata,
        )


def build_browse_request(object_id: str, count: int = 100) -> str:
    return BROWSE_ENVELOPE.format(object_id=escape(object_id), count=count)


def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit('}', 1)[-1]


def _format_from_protocol_info(protocol_info: Optional[str]) -> Optional[str]:
    # protocolInfo is "<protocol>:<network>:<contentFormat>:<additionalInfo>"
    if not protocol_info:
        return None
    fields = protocol_info.split(':')
    if len(fields) >= 3 and fields[2] not in ('', '*'):
        return fields[2]
    return protocol_info


def _parse_metadata(res: ET.Element) -> Optional[FileMetadata]:
    size = res.get('size')
    duration = res.get('duration')
    fmt = _format_from_protocol_info(res.get('protocolInfo'))
    try:
        size_value = int(size) if size is not None else None
    except ValueError:
        size_value = None
    if size_value is None and duration is None and fmt is None:
        return None
    return FileMetadata(size=size_value, duration=duration, format=fmt)


def _parse_object(elem: ET.Element, is_container: bool) -> Optional[DidlObject]:
    title = (elem.findtext('{*}title') or '').strip()
    if not title:
        return None

    obj = DidlObject(title=title, is_container=is_container, object_id=elem.get('id'))
    if not is_container:
        res = elem.find('{*}res')
        if res is not None:
            url = (res.text or '').strip()
            obj.url = url or None
            obj.metadata = _parse_metadata(res)
    return obj


def parse_didl(root: ET.Element) -> List[DidlObject]:
    objects = []
    for elem in root.iter():
        name = _local_name(elem.tag)
        if name == 'item':
            obj = _parse_object(elem, is_container=False)
        elif name == 'container':
            obj = _parse_object(elem, is_container=True)
        else:
            continue
        if obj is not None:
            objects.append(obj)
    return objects


def parse_browse_response(body: Union[str, bytes]) -> List[DidlObject]:
    """
    Parse a Browse response body into DIDL objects.

    Raises:
        SoapFaultError: The body is a SOAP fault
        DidlParseError: The envelope or the embedded DIDL is not XML
    """
    text = body.decode('utf-8', errors='replace') if isinstance(body, bytes) else body
    if any(marker in text for marker in FAULT_MARKERS):
        raise SoapFaultError("UPnP SOAP fault in response")

    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise DidlParseError(f"invalid Browse response: {e}") from e

    if root.find('.//{*}Fault') is not None:
        raise SoapFaultError("UPnP SOAP fault in response")

    result = root.find('.//{*}Result')
    if result is None:
        return parse_didl(root)

    didl = (result.text or '').strip()
    if not didl:
        return []
    try:
        return parse_didl(ET.fromstring(didl))
    except ET.ParseError as e:
        raise DidlParseError(f"invalid DIDL-Lite result: {e}") from e
