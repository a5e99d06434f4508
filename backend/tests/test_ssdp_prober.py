import asyncio
import logging

import pytest

from mediascout.scanner.ssdp_prober import (
    SSDPProber,
    build_msearch,
    extract_base_url,
    extract_friendly_name,
    parse_headers,
    parse_response,
)

SONOS_RESPONSE = (
    "HTTP/1.1 200 OK\r\n"
    "CACHE-CONTROL: max-age=1800\r\n"
    "LOCATION: http://10.0.0.5:1400/desc.xml\r\n"
    "SERVER: Linux/3.14 UPnP/1.0 Sonos/1.0\r\n"
    "ST: upnp:rootdevice\r\n"
    "USN: uuid:RINCON_000E58A0B1C201400::upnp:rootdevice\r\n"
    "\r\n"
)


def make_response(location, server="", st="upnp:rootdevice", usn=""):
    lines = ["HTTP/1.1 200 OK", f"LOCATION: {location}", f"ST: {st}"]
    if server:
        lines.append(f"SERVER: {server}")
    if usn:
        lines.append(f"USN: {usn}")
    return "\r\n".join(lines) + "\r\n\r\n"


class StubResolver:
    def __init__(self, urls=None):
        self.urls = urls or {}
        self.calls = []

    async def resolve(self, location):
        self.calls.append(location)
        return self.urls.get(location)


class Responder(asyncio.DatagramProtocol):
    """Answers every M-SEARCH with a fixed list of responses."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.requests.append(data.decode())
        for response in self.responses:
            self.transport.sendto(response.encode(), addr)


async def start_responder(responses):
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: Responder(responses),
        local_addr=("127.0.0.1", 0),
    )
    return transport, protocol


def test_msearch_format():
    assert build_msearch("upnp:rootdevice") == (
        b'M-SEARCH * HTTP/1.1\r\n'
        b'HOST: 239.255.255.250:1900\r\n'
        b'MAN: "ssdp:discover"\r\n'
        b'ST: upnp:rootdevice\r\n'
        b'MX: 3\r\n'
        b'\r\n'
    )


def test_sonos_response_parses_to_device():
    device = parse_response(SONOS_RESPONSE)

    assert device.location == "http://10.0.0.5:1400/desc.xml"
    assert device.base_url == "http://10.0.0.5:1400"
    assert device.server == "Linux/3.14 UPnP/1.0 Sonos/1.0"
    assert device.name == "Sonos Speaker (Linux/3.14 UPnP/1.0 Sonos/1.0)"
    assert device.content_directory_url is None


def test_headers_split_on_first_colon_and_lowercased():
    headers = parse_headers(make_response("http://192.168.1.2:8200/rootDesc.xml"))
    assert headers["location"] == "http://192.168.1.2:8200/rootDesc.xml"
    assert headers["st"] == "upnp:rootdevice"


@pytest.mark.parametrize("response", [
    "HTTP/1.1 404 Not Found\r\nLOCATION: http://x/desc.xml\r\n\r\n",
    "NOTIFY * HTTP/1.1\r\nLOCATION: http://x/desc.xml\r\n\r\n",
    "HTTP/1.1 200 OK\r\nST: upnp:rootdevice\r\n\r\n",
])
def test_unusable_responses_are_discarded(response):
    assert parse_response(response) is None


def test_friendly_name_fallbacks():
    assert extract_friendly_name("Linux DLNADOC/1.50 Platinum/1.0.5.13", "", "") == "Plex Media Server"
    assert extract_friendly_name("JELLYFIN/10.8", "", "") == "Jellyfin Server"
    assert extract_friendly_name("", "uuid:4d696e69-444c-164e-9d41-b827eb1cf0a2::upnp:rootdevice", "") == "Device 4d696e69"
    assert extract_friendly_name("", "", "urn:schemas-upnp-org:device:MediaServer:1") == "Media Server"
    assert extract_friendly_name("", "", "upnp:rootdevice") == "UPnP Device"
    assert extract_friendly_name("", "", "something:else") == "Unknown Device"


def test_display_name_without_server_is_friendly_name():
    device = parse_response(make_response("http://192.168.1.9/desc.xml", st="urn:schemas-upnp-org:device:MediaServer:1"))
    assert device.name == "Media Server"


def test_base_url_fills_default_port():
    assert extract_base_url("http://192.168.1.9/desc.xml") == "http://192.168.1.9:80"
    assert extract_base_url("https://nas.local/desc.xml") == "https://nas.local:443"
    assert extract_base_url("http://192.168.1.9:8200/rootDesc.xml") == "http://192.168.1.9:8200"


async def test_probe_deduplicates_by_location_and_streams_devices():
    responses = [
        make_response("http://127.0.0.1:8200/rootDesc.xml", server="MiniDLNA/1.3", usn="uuid:aaaa::upnp:rootdevice"),
        make_response("http://127.0.0.1:8200/rootDesc.xml", server="MiniDLNA/1.3",
                      st="urn:schemas-upnp-org:device:MediaServer:1", usn="uuid:aaaa::urn:schemas-upnp-org:device:MediaServer:1"),
        "HTTP/1.1 500 Internal Server Error\r\nLOCATION: http://127.0.0.1:9999/x.xml\r\n\r\n",
        "HTTP/1.1 200 OK\r\nST: upnp:rootdevice\r\n\r\n",
        SONOS_RESPONSE,
    ]
    transport, responder = await start_responder(responses)
    port = transport.get_extra_info("sockname")[1]
    resolver = StubResolver({"http://127.0.0.1:8200/rootDesc.xml": "http://127.0.0.1:8200/ctl/ContentDir"})
    prober = SSDPProber(resolver=resolver, timeout=3.0, read_timeout=0.3, multicast_addr=("127.0.0.1", port))

    streamed = []

    async def on_device(device):
        streamed.append(device)

    try:
        devices, errors = await prober.probe(on_device=on_device)
    finally:
        transport.close()

    assert errors == []
    assert [d.location for d in devices] == [
        "http://127.0.0.1:8200/rootDesc.xml",
        "http://10.0.0.5:1400/desc.xml",
    ]
    assert streamed == devices
    assert devices[0].content_directory_url == "http://127.0.0.1:8200/ctl/ContentDir"
    # Both search targets were sent, each location resolved once
    assert len(responder.requests) == 2
    assert "ST: urn:schemas-upnp-org:device:MediaServer:1" in responder.requests[1]
    assert resolver.calls == ["http://127.0.0.1:8200/rootDesc.xml", "http://10.0.0.5:1400/desc.xml"]


async def test_probe_without_responses_returns_empty():
    transport, _ = await start_responder([])
    port = transport.get_extra_info("sockname")[1]
    prober = SSDPProber(resolver=StubResolver(), timeout=1.0, read_timeout=0.2, multicast_addr=("127.0.0.1", port))

    try:
        devices, errors = await prober.probe()
    finally:
        transport.close()

    assert devices == []
    assert errors == []


def test_malformed_location_is_discarded():
    response = make_response("http://[fe80::1/desc.xml", server="MiniDLNA/1.3")

    with pytest.raises(ValueError):
        extract_base_url("http://[fe80::1/desc.xml")
    assert parse_response(response) is None


async def test_probe_skips_malformed_location(caplog):
    responses = [
        make_response("http://[fe80::1/desc.xml", server="MiniDLNA/1.3"),
        SONOS_RESPONSE,
    ]
    transport, _ = await start_responder(responses)
    port = transport.get_extra_info("sockname")[1]
    resolver = StubResolver()
    logger = logging.getLogger("mediascout.test.ssdp")
    prober = SSDPProber(resolver=resolver, timeout=2.0, read_timeout=0.3,
                        multicast_addr=("127.0.0.1", port), logger=logger)

    caplog.set_level(logging.DEBUG, logger=logger.name)
    try:
        devices, errors = await prober.probe()
    finally:
        transport.close()

    assert errors == []
    assert [d.location for d in devices] == ["http://10.0.0.5:1400/desc.xml"]
    assert resolver.calls == ["http://10.0.0.5:1400/desc.xml"]
    ignored = [r for r in caplog.records if r.getMessage().startswith("Ignoring SSDP response")]
    assert ignored and all(r.name == "mediascout.test.ssdp" for r in ignored)


class SlowResolver(StubResolver):
    """Stalls on one location longer than the SSDP ceiling."""

    def __init__(self, slow_location, urls=None):
        super().__init__(urls)
        self.slow_location = slow_location

    async def resolve(self, location):
        if location == self.slow_location:
            self.calls.append(location)
            await asyncio.sleep(10)
        return await super().resolve(location)


async def test_slow_description_does_not_lose_queued_responses():
    slow = "http://127.0.0.1:8200/rootDesc.xml"
    responses = [
        make_response(slow, server="MiniDLNA/1.3"),
        SONOS_RESPONSE,
        make_response("http://127.0.0.1:32400/desc.xml", server="Plex UPnP/1.0"),
    ]
    transport, _ = await start_responder(responses)
    port = transport.get_extra_info("sockname")[1]
    resolver = SlowResolver(slow, {"http://10.0.0.5:1400/desc.xml": "http://10.0.0.5:1400/cd/control"})
    prober = SSDPProber(resolver=resolver, timeout=1.0, read_timeout=0.3, multicast_addr=("127.0.0.1", port))

    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        devices, errors = await prober.probe()
    finally:
        transport.close()

    assert errors == []
    assert [d.location for d in devices] == [
        slow,
        "http://10.0.0.5:1400/desc.xml",
        "http://127.0.0.1:32400/desc.xml",
    ]
    assert devices[0].content_directory_url is None
    assert loop.time() - started < 3.0
