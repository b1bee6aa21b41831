"""Command-line interface: print a file from the topmost image layer."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import aiofiles
import click

from .core.types import RegistryConfig
from .enumerate import LayerSession
from .exceptions import LayerPeekError

logger = logging.getLogger("layer_peek")

USAGE = "Usage: layer-peek IMAGE_NAME FILE_PATH"


async def _print_layers(image: str, config: RegistryConfig) -> None:
    async with LayerSession(image, config) as session:
        for index, layer in enumerate(session.layers):
            click.echo(f"{index}\t{layer.digest}\t{layer.size}\t{layer.effective_url}")


async def _find(
    image: str, path: str, config: RegistryConfig, output: Optional[Path]
) -> bool:
    async with LayerSession(image, config) as session:
        hit = await session.find(path)

    if hit is None:
        return False
    if output is not None:
        async with aiofiles.open(output, "wb") as file:
            await file.write(hit.payload)
        logger.info("Wrote %d bytes from %s to %s", len(hit.payload), hit.digest, output)
    else:
        click.echo(hit.payload)
    return True


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("args", nargs=-1)
@click.option(
    "-o",
    "--output",
    help="Write the file to this path instead of stdout",
    default=None,
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
)
@click.option("--layers", "list_only", help="List the image layers", is_flag=True)
@click.option("--insecure", help="Use plain HTTP for the registry", is_flag=True)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
def main(
    args: tuple[str, ...],
    output: Optional[Path],
    list_only: bool,
    insecure: bool,
    debug: bool,
):
    """Print FILE_PATH from the topmost layer of IMAGE_NAME that contains it."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if len(args) != (1 if list_only else 2):
        click.echo(USAGE)
        return

    try:
        config = RegistryConfig.from_env()
        if insecure:
            config.insecure = True

        if list_only:
            asyncio.run(_print_layers(args[0], config))
            return

        image, path = args
        if not asyncio.run(_find(image, path, config, output)):
            logger.info("%s not found in any layer of %s", path, image)
    except (LayerPeekError, ValueError, OSError) as e:
        logger.error("%s", e)
        sys.exit(1)
