"""Custom exceptions for remote layer access."""

from typing import Optional


class LayerPeekError(Exception):
    """Base exception for all layer access errors."""

    pass


class RegistryConnectionError(LayerPeekError):
    """Raised when a request to the registry or its CDN fails in transit."""

    pass


class InvalidReferenceError(LayerPeekError):
    """Raised when an image reference cannot be parsed."""

    pass


class AuthResolutionError(LayerPeekError):
    """Raised when the authenticated transport cannot be set up."""

    pass


class ManifestError(LayerPeekError):
    """Raised when the image manifest cannot be fetched or understood."""

    pass


class RedirectResolutionError(LayerPeekError):
    """Raised when the blob redirect probe fails."""

    def __init__(self, message: str, status: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status = status
        self.url = url


class UnexpectedStatusError(LayerPeekError):
    """Raised when a range read returns a status other than 200 or 206."""

    def __init__(self, status: int, url: str = ""):
        super().__init__(f"Unexpected status code {status} from {url}")
        self.status = status
        self.url = url


class UnsupportedResponseError(LayerPeekError):
    """Raised when a range response cannot be consumed safely."""

    pass


class RangeNotSupportedError(UnsupportedResponseError):
    """Raised when the server ignored Range for a read at a non-zero offset."""

    pass


class ShortReadError(LayerPeekError):
    """Raised when fewer bytes arrive than a range read requires."""

    def __init__(self, expected: int, received: int):
        if received == 0:
            message = f"No data available: expected {expected} bytes"
        else:
            message = (
                f"Unexpected end of data: expected {expected} bytes, "
                f"received {received}"
            )
        super().__init__(message)
        self.expected = expected
        self.received = received


class ArchiveError(LayerPeekError):
    """Raised when a layer's archive cannot be read."""

    pass


class LookupTaskError(LayerPeekError):
    """Raised when a per-layer lookup fails; the cause is chained."""

    def __init__(self, index: int, digest: str, message: str = ""):
        text = f"Lookup failed in layer {index} ({digest})"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.index = index
        self.digest = digest
