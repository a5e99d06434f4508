from fastapi import APIRouter, HTTPException, Query
from typing import Optional

from .session import session
from .schemas import (
    DeviceResponse,
    DeviceListResponse,
    DirectoryEntryResponse,
    BrowseResponse,
    DiscoveryTriggerResponse,
    StatusResponse,
)
from ..core.exceptions import BrowseError
from ..scanner.discovery import discovery

router = APIRouter()


def split_path(path: Optional[str]) -> list[str]:
    """Split a slash separated path into entry names, dropping empty segments."""
    if not path:
        return []
    return [segment for segment in path.split("/") if segment]


@router.get("/devices", response_model=DeviceListResponse)
async def get_devices(search: Optional[str] = Query(None)):
    """Get all devices discovered during this session."""
    devices = session.devices
    if search:
        search_term = search.lower()
        devices = [
            d for d in devices
            if search_term in d.name.lower() or search_term in d.location.lower()
        ]

    return DeviceListResponse(
        devices=[DeviceResponse.model_validate(d) for d in devices],
        total=len(devices),
        discovering=session.discovering,
        last_error=session.last_error or None,
    )


@router.get("/devices/browse", response_model=BrowseResponse)
async def browse_device(
    location: str = Query(..., description="Device location URL"),
    path: Optional[str] = Query(None, description="Slash separated entry names"),
):
    """List one directory of a device."""
    device = session.get_device(location)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")

    segments = split_path(path)
    try:
        entries = await session.browse(device, segments)
    except BrowseError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return BrowseResponse(
        location=device.location,
        path=segments,
        entries=[DirectoryEntryResponse.model_validate(e) for e in entries],
    )


@router.post("/discovery", response_model=DiscoveryTriggerResponse)
async def trigger_discovery():
    """Start a discovery run; results arrive over the WebSocket."""
    discovery.start(session.events)
    return DiscoveryTriggerResponse(success=True, message="Discovery started")


@router.post("/cache/reset", response_model=DiscoveryTriggerResponse)
async def reset_cache(location: Optional[str] = Query(None)):
    """Forget container ids for one device, or for all devices."""
    session.reset_caches(location)
    return DiscoveryTriggerResponse(success=True, message="Container cache reset")


@router.get("/status", response_model=StatusResponse)
async def get_status():
    """Current discovery status."""
    return StatusResponse(
        discovering=session.discovering,
        periodic=discovery.running,
        total_devices=len(session.devices),
        errors=session.errors,
        last_error=session.last_error or None,
    )
