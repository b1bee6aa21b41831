"""Image manifest retrieval."""

import asyncio
import json
import logging
from typing import Any

import aiohttp

from ..exceptions import ManifestError
from ..utils.digest import validate_digest, verify_digest
from .transport import Transport
from .types import ImageReference, LayerDescriptor

logger = logging.getLogger(__name__)

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

IMAGE_MANIFEST_TYPES = (DOCKER_MANIFEST_V2, OCI_MANIFEST)
INDEX_TYPES = (DOCKER_MANIFEST_LIST, OCI_INDEX)


async def get_manifest(reference: ImageReference, transport: Transport) -> dict[str, Any]:
    """Fetch the image manifest for a reference.

    Args:
        reference: Image reference to resolve
        transport: Authenticated transport for the repository

    Returns:
        Manifest dictionary

    Raises:
        ManifestError: If retrieval fails or the content does not match a
            pinned digest
    """
    url = f"{reference.repository_url}manifests/{reference.reference}"
    try:
        async with transport.get(
            url, headers={"Accept": ", ".join(IMAGE_MANIFEST_TYPES + INDEX_TYPES)}
        ) as resp:
            if resp.status != 200:
                raise ManifestError(
                    f"Failed to get manifest {reference}: status {resp.status}"
                )
            body = await resp.read()
            content_type = resp.content_type
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ManifestError(
            f"Failed to get manifest: {str(e) or type(e).__name__}"
        ) from e

    if reference.digest and not verify_digest(body, reference.digest):
        raise ManifestError(f"Manifest content does not match {reference.digest}")

    try:
        manifest = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestError(f"Invalid JSON in manifest for {reference}: {e}") from e
    if not isinstance(manifest, dict):
        raise ManifestError(f"Invalid manifest structure for {reference}")

    manifest.setdefault("mediaType", content_type)
    return manifest


def parse_layer_descriptors(
    manifest: dict[str, Any], reference: ImageReference
) -> list[LayerDescriptor]:
    """Extract layer descriptors from an image manifest, bottom layer first.

    Raises:
        ManifestError: For image indexes or malformed layer entries
    """
    media_type = manifest.get("mediaType", "")
    if media_type in INDEX_TYPES or "manifests" in manifest:
        raise ManifestError(
            f"{reference} is a multi-platform index; "
            f"reference a platform-specific manifest digest instead"
        )

    layers = manifest.get("layers")
    if not isinstance(layers, list):
        raise ManifestError(f"Manifest for {reference} has no layers")

    descriptors = []
    for entry in layers:
        if not isinstance(entry, dict):
            raise ManifestError("Invalid layer entry structure")
        digest = entry.get("digest")
        size = entry.get("size")
        if not validate_digest(digest):
            raise ManifestError(f"Invalid layer digest: {digest!r}")
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            raise ManifestError(f"Invalid size for layer {digest}: {size!r}")
        descriptors.append(
            LayerDescriptor(
                digest=digest,
                size=size,
                url=reference.blob_url(digest),
                media_type=entry.get("mediaType", LayerDescriptor.media_type),
            )
        )
    return descriptors


async def fetch_layer_descriptors(
    reference: ImageReference, transport: Transport
) -> list[LayerDescriptor]:
    """Fetch the manifest and return its layer descriptors in stack order."""
    manifest = await get_manifest(reference, transport)
    descriptors = parse_layer_descriptors(manifest, reference)
    logger.debug("Manifest for %s lists %d layers", reference, len(descriptors))
    return descriptors
