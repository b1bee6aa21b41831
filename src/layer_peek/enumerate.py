"""Layer enumeration for an image reference."""

import logging
from typing import Optional, Union

import aiohttp

from .archive import ArchiveOpener, open_tar_archive
from .core.layer import RemoteLayer
from .core.manifest import fetch_layer_descriptors
from .core.transport import Transport
from .core.types import ImageReference, RegistryConfig
from .lookup import LookupHit, find_in_layers
from .utils.reference import parse_reference

logger = logging.getLogger(__name__)


async def enumerate_layers(
    reference: ImageReference,
    transport: Transport,
    config: Optional[RegistryConfig] = None,
) -> list[RemoteLayer]:
    """Resolve every layer of an image into a readable handle.

    Layers keep the manifest order, bottom layer first. Redirects are
    probed in that order and the first failure aborts the enumeration, so a
    partial list is never returned.

    Args:
        reference: Image reference to enumerate
        transport: Authenticated transport for the repository
        config: Session settings (probe timeout)

    Returns:
        Ordered list of RemoteLayer handles

    Raises:
        ManifestError: If the manifest cannot be fetched
        RedirectResolutionError: If any layer's redirect probe fails
    """
    config = config or transport.config
    descriptors = await fetch_layer_descriptors(reference, transport)

    layers = []
    for descriptor in descriptors:
        layer = await RemoteLayer.resolve(
            descriptor, transport, timeout=config.probe_timeout
        )
        layers.append(layer)

    logger.info("Resolved %d layers for %s", len(layers), reference)
    return layers


class LayerSession:
    """One enumeration/lookup session for an image.

    Owns the transport and its client session; nothing created here
    outlives the ``async with`` block.

    Example:
        async with LayerSession("ghcr.io/org/app:v1") as session:
            hit = await session.find("/etc/os-release")
    """

    def __init__(
        self,
        image: Union[str, ImageReference],
        config: Optional[RegistryConfig] = None,
        connector: Optional[aiohttp.BaseConnector] = None,
    ) -> None:
        self.config = config or RegistryConfig()
        if isinstance(image, ImageReference):
            self.reference = image
        else:
            self.reference = parse_reference(image, insecure=self.config.insecure)
        self.transport = Transport(self.reference, self.config, connector=connector)
        self.layers: list[RemoteLayer] = []

    async def __aenter__(self) -> "LayerSession":
        await self.transport.__aenter__()
        try:
            self.layers = await enumerate_layers(
                self.reference, self.transport, self.config
            )
        except BaseException:
            await self.transport.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        self.layers = []
        await self.transport.close()

    async def find(
        self, path: str, opener: ArchiveOpener = open_tar_archive
    ) -> Optional[LookupHit]:
        """Find ``path`` in the session's layers, topmost layer first."""
        return await find_in_layers(path, self.layers, opener=opener)
