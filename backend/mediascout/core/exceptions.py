class MediaScoutError(Exception):
    """Base class for errors raised by MediaScout."""


class BrowseError(MediaScoutError):
    """Every browsing strategy failed for a device/path."""

    def __init__(self, message: str = "no browsable content found"):
        super().__init__(message)


class SoapFaultError(MediaScoutError):
    """ContentDirectory answered with a SOAP fault."""


class DidlParseError(MediaScoutError):
    """A Browse response could not be parsed as SOAP/DIDL-Lite."""
