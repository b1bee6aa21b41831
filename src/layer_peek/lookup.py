"""Concurrent path lookup across an image's layer stack."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .archive import ArchiveOpener, open_tar_archive
from .core.layer import LayerSection, RemoteLayer
from .exceptions import LookupTaskError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupHit:
    """A path found in one layer."""

    index: int
    digest: str
    payload: bytes


async def _lookup_layer(
    index: int, layer: RemoteLayer, path: str, opener: ArchiveOpener
) -> Optional[LookupHit]:
    archive = await opener(LayerSection(layer, 0, layer.size))
    try:
        entry = await archive.lookup(path)
        if entry is None:
            logger.debug("%s not in layer %d (%s)", path, index, layer.digest)
            return None
        payload = await archive.read(entry)
    finally:
        await archive.close()

    logger.debug(
        "%s found in layer %d (%s), %d bytes", path, index, layer.digest, len(payload)
    )
    return LookupHit(index=index, digest=layer.digest, payload=payload)


async def find_in_layers(
    path: str,
    layers: Sequence[RemoteLayer],
    opener: ArchiveOpener = open_tar_archive,
) -> Optional[LookupHit]:
    """Find ``path`` in a layer stack, honoring overlay precedence.

    Every layer is searched concurrently, one task per layer. Results are
    kept per layer position and resolved only after all tasks finish, so the
    topmost layer that has the path wins whatever order the tasks complete
    in.

    Args:
        path: Path to look up inside the layers
        layers: Layers in stack order, bottom layer first
        opener: Opens a layer section as an archive reader

    Returns:
        The hit from the highest layer containing ``path``, or None

    Raises:
        LookupTaskError: For the first layer whose lookup failed; the
            original error is chained as ``__cause__``. The remaining tasks
            are cancelled and no result is returned.
    """
    results: list[Optional[LookupHit]] = [None] * len(layers)

    async def worker(index: int, layer: RemoteLayer) -> None:
        results[index] = await _lookup_layer(index, layer, path, opener)

    tasks = {
        asyncio.create_task(worker(index, layer)): index
        for index, layer in enumerate(layers)
    }
    if not tasks:
        return None

    pending = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_EXCEPTION
            )
            failed = sorted(
                (task for task in done if not task.cancelled() and task.exception()),
                key=tasks.get,
            )
            if failed:
                task = failed[0]
                index = tasks[task]
                error = task.exception()
                raise LookupTaskError(index, layers[index].digest, str(error)) from error
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    for hit in reversed(results):
        if hit is not None:
            logger.info("%s resolved from layer %d (%s)", path, hit.index, hit.digest)
            return hit

    logger.info("%s not found in any of %d layers", path, len(layers))
    return None
