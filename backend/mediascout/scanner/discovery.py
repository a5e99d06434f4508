import asyncio
import logging
from typing import Optional, List

from .models import Device, DiscoveryEvent
from .ssdp_prober import SSDPProber
from .port_scanner import PortScanner
from ..core.config import settings


class DiscoveryOrchestrator:
    """
    Runs SSDP discovery followed by the fallback port scan and reports
    progress as DiscoveryEvents on a consumer-owned asyncio.Queue.

    Each run emits STARTED, one DEVICE_FOUND per new location, one ERROR per
    soft error and finally COMPLETED. Events are put with a blocking put so
    that a full queue slows the run down instead of losing events.
    """

    def __init__(
        self,
        prober: Optional[SSDPProber] = None,
        port_scanner: Optional[PortScanner] = None,
        interval: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.prober = prober or SSDPProber(logger=self.logger)
        self.port_scanner = port_scanner or PortScanner(logger=self.logger)
        self.interval = interval or settings.DISCOVERY_INTERVAL
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._runs: set = set()

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, sink: asyncio.Queue) -> List[Device]:
        """
        Perform one discovery run.

        Args:
            sink: Queue receiving the run's DiscoveryEvents

        Returns:
            Devices found by this run, in emission order
        """
        await sink.put(DiscoveryEvent.started())
        self.logger.info("Starting UPnP discovery")

        devices: List[Device] = []
        seen = set()

        async def emit_device(device: Device):
            if device.location in seen:
                self.logger.debug(f"Duplicate device ignored: {device.location}")
                return
            seen.add(device.location)
            devices.append(device)
            await sink.put(DiscoveryEvent.device_found(device))

        errors: List[str] = []

        try:
            ssdp_devices, ssdp_errors = await self.prober.probe(on_device=emit_device)
            errors.extend(ssdp_errors)

            # seen is shared so the scan skips anything SSDP already reported
            scan_devices, scan_errors = await self.port_scanner.scan(
                on_device=emit_device,
                known_locations=seen,
            )
            errors.extend(scan_errors)
            self.logger.info(
                f"Discovery completed: {len(ssdp_devices)} via SSDP, "
                f"{len(scan_devices)} via port scan, {len(devices)} total"
            )
        except Exception as e:
            self.logger.exception("Discovery run failed")
            errors.append(f"Discovery failed: {e}")

        for message in errors:
            self.logger.warning(f"Discovery error: {message}")
            await sink.put(DiscoveryEvent.error(message))

        await sink.put(DiscoveryEvent.completed())
        return devices

    def start(self, sink: asyncio.Queue) -> asyncio.Task:
        """Schedule one run in the background and return its task."""
        task = asyncio.create_task(self._run_logged(sink))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def start_background_discovery(self, sink: asyncio.Queue):
        """Start periodic discovery runs."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._discovery_loop(sink))

    async def stop_background_discovery(self):
        """Stop periodic discovery runs."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

    async def _discovery_loop(self, sink: asyncio.Queue):
        while self._running:
            await self._run_logged(sink)
            await asyncio.sleep(self.interval)

    async def _run_logged(self, sink: asyncio.Queue) -> List[Device]:
        try:
            return await self.run(sink)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("Discovery run failed")
            return []


# Global orchestrator instance
discovery = DiscoveryOrchestrator()
