"""
UPnP device description lookup.

Fetches the description document a device advertises in its SSDP
LOCATION header and extracts the ContentDirectory control URL used for
browsing.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Optional
from urllib.parse import urljoin

import aiohttp

from ..core.config import settings

CONTENT_DIRECTORY = "ContentDirectory"


def parse_control_url(xml_text: str, location: str) -> Optional[str]:
    """
    Extract the ContentDirectory control URL from a device description.

    Relative control URLs are resolved against <URLBase> when the device
    declares one, otherwise against the document location.

    Raises:
        xml.etree.ElementTree.ParseError: If the document is not XML
        ValueError: If URLBase or controlURL is not a valid URL
    """
    root = ET.fromstring(xml_text)
    base = (root.findtext('{*}URLBase') or '').strip() or location

    # Embedded devices carry their own serviceList, so search the whole tree
    for service in root.findall('.//{*}service'):
        service_type = service.findtext('{*}serviceType') or ''
        control_url = (service.findtext('{*}controlURL') or '').strip()
        if CONTENT_DIRECTORY in service_type and control_url:
            return urljoin(base, control_url)

    return None


class DeviceResolver:
    """Resolves device descriptions over HTTP."""

    def __init__(self, timeout: Optional[float] = None, logger: Optional[logging.Logger] = None):
        self.timeout = timeout if timeout is not None else settings.DESCRIPTION_TIMEOUT
        self.logger = logger or logging.getLogger(__name__)

    async def resolve(self, location: str) -> Optional[str]:
        """Return the ContentDirectory control URL for a device, None on any failure."""
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(location) as response:
                    if response.status != 200:
                        self.logger.debug(f"Description fetch for {location} returned {response.status}")
                        return None
                    text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.debug(f"Description fetch failed for {location}: {e!r}")
            return None

        try:
            return parse_control_url(text, location)
        except (ET.ParseError, ValueError) as e:
            self.logger.debug(f"Unusable description at {location}: {e}")
            return None
