from pydantic import BaseModel, ConfigDict
from typing import Optional


class DeviceResponse(BaseModel):
    """Discovered device schema."""
    model_config = ConfigDict(from_attributes=True)

    name: str
    location: str
    base_url: str
    server: str = ""
    content_directory_url: Optional[str] = None


class DeviceListResponse(BaseModel):
    """Device list with discovery status."""
    devices: list[DeviceResponse]
    total: int
    discovering: bool
    last_error: Optional[str] = None


class FileMetadataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    size: Optional[int] = None
    duration: Optional[str] = None
    format: Optional[str] = None


class DirectoryEntryResponse(BaseModel):
    """Directory entry schema."""
    model_config = ConfigDict(from_attributes=True)

    name: str
    is_container: bool
    url: Optional[str] = None
    metadata: Optional[FileMetadataResponse] = None


class BrowseResponse(BaseModel):
    """Listing of one directory."""
    location: str
    path: list[str]
    entries: list[DirectoryEntryResponse]


class DiscoveryTriggerResponse(BaseModel):
    """Discovery trigger response schema."""
    success: bool
    message: str


class StatusResponse(BaseModel):
    """Discovery status schema."""
    discovering: bool
    periodic: bool
    total_devices: int
    errors: list[str]
    last_error: Optional[str] = None
