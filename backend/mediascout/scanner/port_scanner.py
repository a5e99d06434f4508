import asyncio
import logging
import socket
from typing import Optional, List, Tuple, Iterable, Callable, Awaitable

import aiohttp

from .models import Device
from ..core.config import settings

# Known media server ports
MEDIA_PORTS = {
    32400: "Plex",
    8096: "Jellyfin",
    8920: "Emby",
}

HEALTH_PATHS = ["/", "/status", "/identity"]

DeviceCallback = Callable[[Device], Awaitable[None]]


def get_local_network_base() -> str:
    """
    First three octets of the primary local IPv4 address.

    Connecting a UDP socket sends nothing; it only selects the outbound
    interface so its address can be read back.

    Raises:
        OSError: If no route/interface is available
        ValueError: If the local address is not IPv4
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("8.8.8.8", 80))
        ip = sock.getsockname()[0]
    finally:
        sock.close()

    parts = ip.split('.')
    if len(parts) != 4:
        raise ValueError(f"invalid IP address: {ip}")
    return '.'.join(parts[:3])


def server_name(port: int, ip: str) -> str:
    vendor = MEDIA_PORTS.get(port, "Media")
    return f"{vendor} Server ({ip}:{port})"


class PortScanner:
    """Probes a handful of likely hosts for known media server ports."""

    def __init__(
        self,
        hosts: Optional[Iterable[int]] = None,
        ports: Optional[Iterable[int]] = None,
        timeout: Optional[float] = None,
        network_base: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.hosts = list(hosts) if hosts is not None else list(settings.PORT_SCAN_HOSTS)
        self.ports = list(ports) if ports is not None else list(settings.PORT_SCAN_PORTS)
        self.timeout = timeout if timeout is not None else settings.PORT_SCAN_TIMEOUT
        self.network_base = network_base or settings.DEFAULT_NETWORK_BASE
        self.logger = logger or logging.getLogger(__name__)

    async def scan(
        self,
        on_device: Optional[DeviceCallback] = None,
        known_locations: Optional[set] = None,
    ) -> Tuple[List[Device], List[str]]:
        """
        Probe every host/port pair of the scan matrix.

        Args:
            on_device: Awaited for each new device
            known_locations: Locations already discovered elsewhere; devices
                with these locations are not reported again

        Returns:
            (devices, soft_errors)
        """
        devices: List[Device] = []
        errors: List[str] = []
        known = known_locations if known_locations is not None else set()

        network_base = self.network_base
        if not network_base:
            try:
                network_base = get_local_network_base()
            except (OSError, ValueError) as e:
                errors.append(f"Failed to get local network: {e}")
                return devices, errors

        targets = [
            (f"{network_base}.{suffix}", port)
            for suffix in self.hosts
            for port in self.ports
        ]
        self.logger.info(f"Port scanning {len(targets)} endpoints on {network_base}.0/24")

        seen = set()
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as session:
            probes = [self._scan_endpoint(session, ip, port) for ip, port in targets]
            for probe in asyncio.as_completed(probes):
                device = await probe
                if device is None:
                    continue
                if device.location in seen or device.location in known:
                    continue
                seen.add(device.location)
                devices.append(device)
                if on_device is not None:
                    await on_device(device)

        self.logger.info(f"Port scan found {len(devices)} devices, {len(errors)} errors")
        return devices, errors

    async def _scan_endpoint(self, session: aiohttp.ClientSession, ip: str, port: int) -> Optional[Device]:
        url = f"http://{ip}:{port}"
        for path in HEALTH_PATHS:
            try:
                async with session.get(url + path, allow_redirects=False) as response:
                    if response.status == 200:
                        self.logger.info(f"Media server answered at {url}{path}")
                        return Device(
                            name=server_name(port, ip),
                            location=url,
                            base_url=url,
                            server="PortScan",
                        )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
                continue
        return None
