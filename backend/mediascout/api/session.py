import asyncio
import logging
from typing import Optional, Dict, List, Sequence

from ..browser import ContentBrowser, PathContainerCache
from ..core.config import settings
from ..scanner.models import Device, DirectoryEntry, DiscoveryEvent, EventType

NO_DEVICES_MESSAGE = "No UPnP devices found"


class MediaSession:
    """
    Consumer-side state: the accumulated device list, discovery status and
    one container id cache per device.

    Devices are merged by location across runs. Browses are serialized
    because the container caches are not safe for concurrent mutation.
    """

    def __init__(self, browser: Optional[ContentBrowser] = None, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.browser = browser or ContentBrowser(logger=self.logger)
        self.events: asyncio.Queue = asyncio.Queue(maxsize=settings.EVENT_QUEUE_SIZE)
        self.devices: List[Device] = []
        self.errors: List[str] = []
        self.discovering = False
        self.last_error = ""
        self._caches: Dict[str, PathContainerCache] = {}
        self._browse_lock = asyncio.Lock()

    def apply(self, event: DiscoveryEvent):
        """Update session state from a discovery event."""
        if event.type == EventType.STARTED:
            self.discovering = True
            self.errors = []
            self.logger.info(f"Discovery started, devices known: {len(self.devices)}")
        elif event.type == EventType.DEVICE_FOUND and event.device is not None:
            if self.add_device(event.device):
                self.logger.info(f"Added device: {event.device.name}, total devices: {len(self.devices)}")
            else:
                self.logger.debug(f"Duplicate device ignored: {event.device.name}")
        elif event.type == EventType.ERROR:
            self.errors.append(event.message or "")
            self.last_error = event.message or ""
        elif event.type == EventType.COMPLETED:
            self.discovering = False
            self.last_error = "" if self.devices else NO_DEVICES_MESSAGE
            self.logger.info(f"Discovery completed, total devices: {len(self.devices)}")

    def add_device(self, device: Device) -> bool:
        if self.get_device(device.location) is not None:
            return False
        self.devices.append(device)
        return True

    def get_device(self, location: str) -> Optional[Device]:
        for device in self.devices:
            if device.location == location:
                return device
        return None

    def cache_for(self, location: str) -> PathContainerCache:
        if location not in self._caches:
            self._caches[location] = PathContainerCache()
        return self._caches[location]

    def reset_caches(self, location: Optional[str] = None):
        if location is None:
            self._caches.clear()
        elif location in self._caches:
            self._caches[location].reset()

    async def browse(self, device: Device, path: Sequence[str]) -> List[DirectoryEntry]:
        """Browse `path` on `device` using this session's cache for it."""
        async with self._browse_lock:
            return await self.browser.browse(device, path, self.cache_for(device.location))


# Global session instance
session = MediaSession()
