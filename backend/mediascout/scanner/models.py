from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any


@dataclass(frozen=True)
class Device:
    """A discovered media device. `location` is its identity."""
    name: str
    location: str
    base_url: str
    server: str = ""
    content_directory_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FileMetadata:
    size: Optional[int] = None
    duration: Optional[str] = None
    format: Optional[str] = None


@dataclass(frozen=True)
class DirectoryEntry:
    """One child of a browsed directory."""
    name: str
    is_container: bool
    url: Optional[str] = None
    metadata: Optional[FileMetadata] = None


class EventType(str, Enum):
    STARTED = "started"
    DEVICE_FOUND = "device_found"
    ERROR = "error"
    COMPLETED = "completed"


@dataclass(frozen=True)
class DiscoveryEvent:
    """Message sent from a discovery run to the consumer."""
    type: EventType
    device: Optional[Device] = None
    message: Optional[str] = None

    @classmethod
    def started(cls) -> "DiscoveryEvent":
        return cls(EventType.STARTED)

    @classmethod
    def device_found(cls, device: Device) -> "DiscoveryEvent":
        return cls(EventType.DEVICE_FOUND, device=device)

    @classmethod
    def error(cls, message: str) -> "DiscoveryEvent":
        return cls(EventType.ERROR, message=message)

    @classmethod
    def completed(cls) -> "DiscoveryEvent":
        return cls(EventType.COMPLETED)

    def payload(self) -> Dict[str, Any]:
        """Data part of the websocket message for this event."""
        if self.type == EventType.DEVICE_FOUND and self.device is not None:
            return self.device.to_dict()
        if self.type == EventType.ERROR:
            return {"message": self.message}
        return {}
