"""layer-peek - Random access to remote container image layers."""

__version__ = "0.1.0"

from .core.layer import LayerSection, RemoteLayer
from .core.transport import Transport
from .core.types import ImageReference, LayerDescriptor, RegistryConfig
from .enumerate import LayerSession, enumerate_layers
from .exceptions import (
    ArchiveError,
    AuthResolutionError,
    InvalidReferenceError,
    LayerPeekError,
    LookupTaskError,
    ManifestError,
    RangeNotSupportedError,
    RedirectResolutionError,
    RegistryConnectionError,
    ShortReadError,
    UnexpectedStatusError,
    UnsupportedResponseError,
)
from .lookup import LookupHit, find_in_layers
from .registry import find_file, list_layers, read_layer_range

__all__ = [
    "ImageReference",
    "LayerDescriptor",
    "RegistryConfig",
    "Transport",
    "RemoteLayer",
    "LayerSection",
    "LayerSession",
    "LookupHit",
    "enumerate_layers",
    "find_in_layers",
    "find_file",
    "list_layers",
    "read_layer_range",
    "LayerPeekError",
    "InvalidReferenceError",
    "AuthResolutionError",
    "ManifestError",
    "RedirectResolutionError",
    "UnexpectedStatusError",
    "UnsupportedResponseError",
    "RangeNotSupportedError",
    "ShortReadError",
    "RegistryConnectionError",
    "ArchiveError",
    "LookupTaskError",
]
