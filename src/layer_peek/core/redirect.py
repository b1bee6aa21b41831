"""Blob redirect resolution."""

import asyncio
import logging
from urllib.parse import urljoin

import aiohttp

from ..exceptions import RedirectResolutionError
from .transport import Transport
from .types import DEFAULT_PROBE_TIMEOUT

logger = logging.getLogger(__name__)

PROBE_RANGE = "bytes=0-1"


async def _discard_body(resp: aiohttp.ClientResponse, blob_url: str) -> None:
    # The status already decided the outcome. A server ignoring Range sends
    # the whole blob here, so read at most the probed bytes and let the
    # response close the connection on release.
    try:
        await resp.content.read(2)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug("Discarding probe body of %s failed: %r", blob_url, e)


async def resolve_redirect(
    blob_url: str,
    transport: Transport,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> str:
    """Determine the URL that serves the blob's bytes.

    A GET for the first two bytes is used rather than HEAD: some registries
    answer HEAD with 200 and no Location even when GET redirects. Only one
    redirect hop is followed; the target is returned without probing it.

    Args:
        blob_url: Canonical ``/v2/<repository>/blobs/<digest>`` URL
        transport: Authenticated transport for the repository
        timeout: Total probe timeout in seconds (<= 0 disables it)

    Returns:
        The blob URL itself when the registry serves the blob, otherwise
        the redirect target

    Raises:
        RedirectResolutionError: If the probe fails or returns an
            unexpected status
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout if timeout > 0 else None)
    try:
        async with transport.get(
            blob_url,
            headers={"Range": PROBE_RANGE},
            allow_redirects=False,
            timeout=client_timeout,
        ) as resp:
            status = resp.status
            location = resp.headers.get("Location", "")
            await _discard_body(resp, blob_url)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise RedirectResolutionError(
            f"Failed to probe {blob_url}: {str(e) or type(e).__name__}", url=blob_url
        ) from e

    if 200 <= status < 300:
        logger.debug("Registry serves %s directly (%d)", blob_url, status)
        return blob_url
    if 300 <= status < 400 and location:
        # TODO: support nested redirection
        target = urljoin(blob_url, location)
        logger.debug("Blob %s redirects to %s", blob_url, target)
        return target

    raise RedirectResolutionError(
        f"Failed to access the registry with status {status} for {blob_url}",
        status=status,
        url=blob_url,
    )
