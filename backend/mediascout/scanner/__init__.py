# Scanner module
from .discovery import DiscoveryOrchestrator
from .ssdp_prober import SSDPProber
from .port_scanner import PortScanner
from .device_resolver import DeviceResolver

__all__ = ["DiscoveryOrchestrator", "SSDPProber", "PortScanner", "DeviceResolver"]
