"""
Directory browsing for discovered devices.

Strategies, in order:
1. UPnP ContentDirectory Browse (SOAP) when the device advertises one
2. HTTP heuristics against the device base URL: well-known media server
   endpoints, JSON shape sniffing, then HTML anchor scraping

Every failure moves on to the next strategy. Only when none yields entries
does browse() raise BrowseError.
"""

import asyncio
import logging
import re
from typing import Optional, List, Sequence
from urllib.parse import urljoin, urlsplit, unquote, quote

import aiohttp

from .cache import PathContainerCache
from .didl import BROWSE_ACTION, DidlObject, build_browse_request, parse_browse_response
from ..core.config import settings
from ..core.exceptions import BrowseError, SoapFaultError, DidlParseError
from ..scanner.models import Device, DirectoryEntry

REQUESTED_COUNT = 100

# Tried in order at the root of a device without ContentDirectory
ROOT_ENDPOINTS = [
    "/library/sections",  # Plex
    "/Users",             # Jellyfin/Emby
    "/Items",             # Jellyfin/Emby
    "/",
]

ANCHOR_RE = re.compile(r'<a\s[^>]*?href\s*=\s*["\']([^"\']+)["\'][^>]*>(.*?)</a>', re.IGNORECASE | re.DOTALL)


def parse_json_listing(text: str) -> List[DirectoryEntry]:
    """Recognise Plex / Jellyfin / Emby API responses by their shape."""
    if '"MediaContainer"' in text:
        return [DirectoryEntry(name="Plex Media Server", is_container=True)]
    if '"Items"' in text:
        return [DirectoryEntry(name="Media Library", is_container=True)]
    return []


def parse_html_listing(html: str, page_url: str) -> List[DirectoryEntry]:
    """Scrape an auto-index style HTML page. Hrefs ending in "/" are directories."""
    if not page_url.endswith('/'):
        page_url += '/'

    entries = []
    for href, label in ANCHOR_RE.findall(html):
        if 'Parent Directory' in label:
            continue
        if href.startswith(('?', '#', 'mailto:', 'javascript:')):
            continue

        segment = urlsplit(href).path.rstrip('/').rsplit('/', 1)[-1]
        name = unquote(segment)
        if name in ('', '.', '..'):
            continue

        entries.append(DirectoryEntry(
            name=name,
            is_container=href.endswith('/'),
            url=urljoin(page_url, href),
        ))
    return entries


class ContentBrowser:
    """Lists the contents of a device directory."""

    def __init__(
        self,
        soap_timeout: Optional[float] = None,
        http_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.soap_timeout = soap_timeout if soap_timeout is not None else settings.BROWSE_TIMEOUT
        self.http_timeout = http_timeout if http_timeout is not None else settings.HTTP_BROWSE_TIMEOUT
        self.logger = logger or logging.getLogger(__name__)

    async def browse(
        self,
        device: Device,
        path: Sequence[str],
        cache: PathContainerCache,
    ) -> List[DirectoryEntry]:
        """
        List the entries at `path` on `device`.

        Args:
            device: Device to browse
            path: Entry names from the root, [] for the root itself
            cache: Session container id cache, updated with child containers

        Raises:
            BrowseError: If no strategy produced any entries
        """
        path = list(path)

        if device.content_directory_url:
            container_id = cache.container_id(path)
            try:
                objects = await self._browse_content_directory(device.content_directory_url, container_id)
            except (aiohttp.ClientError, asyncio.TimeoutError, SoapFaultError, DidlParseError) as e:
                self.logger.warning(f"UPnP browsing failed for {device.location}: {e!r}; trying HTTP")
            else:
                self._remember_containers(cache, path, objects)
                return [obj.to_entry() for obj in objects]

        return await self._browse_http(device.base_url, path)

    def browse_blocking(
        self,
        device: Device,
        path: Sequence[str],
        cache: PathContainerCache,
    ) -> List[DirectoryEntry]:
        """browse() for callers that are not running an event loop."""
        return asyncio.run(self.browse(device, path, cache))

    def _remember_containers(self, cache: PathContainerCache, path: List[str], objects: List[DidlObject]):
        for obj in objects:
            if not obj.is_container:
                continue
            # Servers without object ids get the title, matching how the path is keyed
            container_id = obj.object_id or obj.title
            if cache.remember(path + [obj.title], container_id):
                self.logger.debug(f"Container {'/'.join(path + [obj.title])!r} -> {container_id!r}")

    async def _browse_content_directory(self, control_url: str, container_id: str) -> List[DidlObject]:
        headers = {
            'Content-Type': 'text/xml; charset=utf-8',
            'SOAPAction': f'"{BROWSE_ACTION}"',
        }
        body = build_browse_request(container_id, REQUESTED_COUNT)
        self.logger.debug(f"SOAP Browse {control_url} ObjectID={container_id!r}")

        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.soap_timeout)) as session:
            async with session.post(control_url, data=body.encode('utf-8'), headers=headers) as response:
                response.raise_for_status()
                payload = await response.read()

        return parse_browse_response(payload)

    async def _browse_http(self, base_url: str, path: List[str]) -> List[DirectoryEntry]:
        if path:
            endpoints = ["/" + "/".join(quote(segment) for segment in path)]
        else:
            endpoints = ROOT_ENDPOINTS

        base_url = base_url.rstrip('/')
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.http_timeout)) as session:
            for endpoint in endpoints:
                url = base_url + endpoint
                try:
                    async with session.get(url) as response:
                        if response.status != 200:
                            self.logger.debug(f"HTTP browse {url} returned {response.status}")
                            continue
                        text = await response.text(errors='replace')
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    self.logger.debug(f"HTTP browse {url} failed: {e!r}")
                    continue

                entries = parse_json_listing(text) or parse_html_listing(text, url)
                if entries:
                    return entries

        raise BrowseError()
