"""
SSDP (Simple Service Discovery Protocol) probing for UPnP media devices.

Sends M-SEARCH requests to the SSDP multicast group and turns the unicast
responses into Device records:
- responses must start with "HTTP/1.1 200 OK" and carry a LOCATION header
- devices are deduplicated by LOCATION
- the ContentDirectory control URL is resolved eagerly from the device
  description, bounded by the overall ceiling (best effort)

The probe never raises. Socket problems are returned as soft errors
alongside whatever was collected.
"""

import asyncio
import logging
import re
import socket
from dataclasses import replace
from typing import Optional, Dict, List, Tuple, Callable, Awaitable
from urllib.parse import urlsplit

from .models import Device
from .device_resolver import DeviceResolver
from ..core.config import settings

# SSDP constants
SSDP_ADDR = "239.255.255.250"
SSDP_PORT = 1900

ST_ROOT_DEVICE = "upnp:rootdevice"
ST_MEDIA_SERVER = "urn:schemas-upnp-org:device:MediaServer:1"
SEARCH_TARGETS = [ST_ROOT_DEVICE, ST_MEDIA_SERVER]

RESPONSE_PREFIX = "HTTP/1.1 200 OK"

# Substring of the SERVER header (lower case) -> friendly name
VENDOR_NAMES = [
    ("plex", "Plex Media Server"),
    ("platinum", "Plex Media Server"),
    ("jellyfin", "Jellyfin Server"),
    ("emby", "Emby Server"),
    ("sonos", "Sonos Speaker"),
    ("chromecast", "Chromecast"),
    ("hue", "Philips Hue Bridge"),
    ("hp-ilo", "HP iLO Server"),
]

TARGET_NAMES = {
    ST_MEDIA_SERVER: "Media Server",
    ST_ROOT_DEVICE: "UPnP Device",
    "urn:schemas-upnp-org:device:basic:1": "Basic Device",
}

UUID_RE = re.compile(r'uuid:(.*?)::')

DeviceCallback = Callable[[Device], Awaitable[None]]


def build_msearch(st: str, mx: int = 3) -> bytes:
    return (
        'M-SEARCH * HTTP/1.1\r\n'
        f'HOST: {SSDP_ADDR}:{SSDP_PORT}\r\n'
        'MAN: "ssdp:discover"\r\n'
        f'ST: {st}\r\n'
        f'MX: {mx}\r\n'
        '\r\n'
    ).encode()


def parse_headers(response: str) -> Optional[Dict[str, str]]:
    """
    Parse an SSDP response into lower-cased headers.

    Returns None unless the response is an HTTP/1.1 200 OK.
    """
    if not response.startswith(RESPONSE_PREFIX):
        return None

    headers = {}
    for line in response.split('\r\n')[1:]:
        line = line.strip()
        if ':' not in line:
            continue
        key, value = line.split(':', 1)
        headers[key.strip().lower()] = value.strip()
    return headers


def extract_friendly_name(server: str, usn: str, st: str) -> str:
    """Best-effort display name from the SERVER, USN and ST headers."""
    server_lower = server.lower()
    for needle, name in VENDOR_NAMES:
        if needle in server_lower:
            return name

    if 'RINCON_' in usn:
        return "Sonos Speaker"
    match = UUID_RE.search(usn)
    if match:
        return f"Device {match.group(1)[:8]}"

    return TARGET_NAMES.get(st, "Unknown Device")


def extract_base_url(location: str) -> str:
    """
    scheme://host:port of a location URL, with the default port filled in.

    Raises:
        ValueError: If the location is not a valid URL (bad IPv6 literal or port)
    """
    parts = urlsplit(location)
    if parts.scheme not in ('http', 'https') or not parts.hostname:
        return location
    port = parts.port
    if port is None:
        port = 443 if parts.scheme == 'https' else 80
    host = parts.hostname
    if ':' in host:
        host = f"[{host}]"
    return f"{parts.scheme}://{host}:{port}"


def parse_response(response: str, content_directory_url: Optional[str] = None) -> Optional[Device]:
    """Build a Device from an SSDP response, None if it is not usable."""
    headers = parse_headers(response)
    if headers is None:
        return None

    location = headers.get('location', '')
    if not location:
        return None

    server = headers.get('server', '')
    st = headers.get('st', '')
    usn = headers.get('usn', '')

    try:
        base_url = extract_base_url(location)
    except ValueError:
        return None

    friendly_name = extract_friendly_name(server, usn, st)
    name = f"{friendly_name} ({server})" if server else friendly_name

    return Device(
        name=name,
        location=location,
        base_url=base_url,
        server=server,
        content_directory_url=content_directory_url,
    )


class SSDPResponseProtocol(asyncio.DatagramProtocol):
    """Queues every datagram received on the search socket."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.datagrams: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: tuple):
        self.datagrams.put_nowait((data, addr))

    def error_received(self, exc: Exception):
        self.logger.warning(f"SSDP read error: {exc}")


class SSDPProber:
    """Discovers UPnP devices with SSDP M-SEARCH."""

    def __init__(
        self,
        resolver: Optional[DeviceResolver] = None,
        timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        mx: Optional[int] = None,
        multicast_addr: Tuple[str, int] = (SSDP_ADDR, SSDP_PORT),
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.resolver = resolver or DeviceResolver(logger=self.logger)
        self.timeout = timeout if timeout is not None else settings.SSDP_TIMEOUT
        self.read_timeout = read_timeout if read_timeout is not None else settings.SSDP_READ_TIMEOUT
        self.mx = mx if mx is not None else settings.SSDP_MX
        self.multicast_addr = multicast_addr

    async def probe(
        self,
        timeout: Optional[float] = None,
        on_device: Optional[DeviceCallback] = None,
    ) -> Tuple[List[Device], List[str]]:
        """
        Run one SSDP search.

        Args:
            timeout: Overall ceiling for collecting responses (seconds)
            on_device: Awaited for each new device before reading continues

        Returns:
            (devices, soft_errors)
        """
        ceiling = timeout if timeout is not None else self.timeout
        devices: List[Device] = []
        errors: List[str] = []
        loop = asyncio.get_running_loop()

        self.logger.info("Starting SSDP discovery")
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: SSDPResponseProtocol(self.logger),
                local_addr=('0.0.0.0', 0),
                family=socket.AF_INET,
            )
        except OSError as e:
            errors.append(f"Failed to create UDP socket: {e}")
            return devices, errors

        try:
            host, port = self.multicast_addr
            try:
                infos = await loop.getaddrinfo(host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM)
                target = infos[0][4]
            except (OSError, IndexError) as e:
                errors.append(f"Failed to resolve multicast address: {e}")
                return devices, errors

            self._set_multicast_ttl(transport)

            for index, st in enumerate(SEARCH_TARGETS):
                self.logger.debug(f"Sending M-SEARCH for {st}")
                try:
                    transport.sendto(build_msearch(st, self.mx), target)
                except OSError as e:
                    if index == 0:
                        errors.append(f"Failed to send M-SEARCH: {e}")
                        return devices, errors
                    self.logger.warning(f"Failed to send M-SEARCH for {st}: {e}")

            await self._collect(protocol, ceiling, devices, on_device)
        finally:
            transport.close()

        self.logger.info(f"SSDP found {len(devices)} devices, {len(errors)} errors")
        return devices, errors

    async def _collect(
        self,
        protocol: SSDPResponseProtocol,
        ceiling: float,
        devices: List[Device],
        on_device: Optional[DeviceCallback],
    ):
        loop = asyncio.get_running_loop()
        seen = set()
        started = loop.time()
        response_count = 0

        while True:
            remaining = ceiling - (loop.time() - started)
            if remaining <= 0:
                self.logger.debug(f"SSDP ceiling reached after {response_count} responses")
                break
            try:
                data, addr = await asyncio.wait_for(
                    protocol.datagrams.get(),
                    timeout=min(self.read_timeout, remaining),
                )
            except asyncio.TimeoutError:
                self.logger.debug(f"SSDP timeout after {response_count} responses")
                break

            response_count += 1
            lookup_timeout = ceiling - (loop.time() - started)
            await self._handle_response(data, addr, lookup_timeout, seen, devices, on_device)

        # Responses that queued up while descriptions were being fetched
        while not protocol.datagrams.empty():
            data, addr = protocol.datagrams.get_nowait()
            response_count += 1
            await self._handle_response(data, addr, 0, seen, devices, on_device)

    async def _handle_response(
        self,
        data: bytes,
        addr: tuple,
        lookup_timeout: float,
        seen: set,
        devices: List[Device],
        on_device: Optional[DeviceCallback],
    ):
        response = data.decode('utf-8', errors='ignore')
        device = parse_response(response)
        if device is None:
            self.logger.debug(f"Ignoring SSDP response from {addr[0]}: {response[:200]!r}")
            return
        if device.location in seen:
            return
        seen.add(device.location)

        if lookup_timeout > 0:
            try:
                content_directory_url = await asyncio.wait_for(
                    self.resolver.resolve(device.location),
                    timeout=lookup_timeout,
                )
            except asyncio.TimeoutError:
                self.logger.debug(f"Description lookup for {device.location} ran past the SSDP ceiling")
            else:
                device = replace(device, content_directory_url=content_directory_url)

        self.logger.info(f"Parsed device: {device.name} at {device.location}")
        devices.append(device)
        if on_device is not None:
            await on_device(device)

    def _set_multicast_ttl(self, transport: asyncio.DatagramTransport):
        sock = transport.get_extra_info('socket')
        if sock is None:
            return
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
        except OSError as e:
            self.logger.debug(f"Could not set multicast TTL: {e}")
