"""Archive reader interface and the tar-backed default reader.

The lookup orchestrator only needs ``lookup(path)`` and ``read(entry)`` from
an archive reader; the layer's archive format stays opaque to it. The
default reader hands the remote layer to the standard library ``tarfile``
module, which runs in a worker thread and pulls bytes back through the
event loop with range reads.

Tar has no index and a later entry replaces an earlier one with the same
name, so a lookup walks every member header. For an uncompressed layer that
means one small read per header plus a seek over each member body. A gzip
layer cannot be seeked, so a lookup streams and inflates the whole blob, and
reading a hit seeks backwards, which restarts decompression from the start
of the stream. Random access pays off for uncompressed layers only; a
compressed layer is effectively downloaded once per lookup.
"""

import asyncio
import io
import logging
import posixpath
import tarfile
import zlib
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Optional, Protocol

from .core.layer import LayerSection
from .exceptions import ArchiveError

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1024 * 1024  # 1MB


class ArchiveReader(Protocol):
    """Path lookup over one layer's archive."""

    async def lookup(self, path: str) -> Optional[Any]:
        """Return the entry for ``path`` or None when the layer lacks it."""
        ...

    async def read(self, entry: Any) -> bytes:
        """Return the full content of an entry returned by lookup()."""
        ...

    async def close(self) -> None:
        ...


ArchiveOpener = Callable[[LayerSection], Awaitable[ArchiveReader]]


def normalize_path(path: str) -> str:
    """Normalize an archive path: no leading "/" or "./", no "..".

    Examples:
        normalize_path("/etc/os-release")  # "etc/os-release"
        normalize_path("./usr//bin/../lib")  # "usr/lib"
    """
    return posixpath.normpath("/" + path.strip()).lstrip("/")


class SectionFile(io.RawIOBase):
    """Blocking, seekable file object over a remote layer section.

    Used from a worker thread only: each read schedules a range read on the
    event loop and waits for it.
    """

    def __init__(self, section: LayerSection, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._section = section
        self._loop = loop
        self._position = 0
        self._cancelled = False

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = self._section.size + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if position < 0:
            raise ValueError(f"Negative seek position: {position}")
        self._position = position
        return position

    def cancel(self) -> None:
        """Make every further read fail, ending a scan that nobody awaits."""
        self._cancelled = True

    def readinto(self, buffer) -> int:
        if self._cancelled:
            raise ArchiveError(f"Read of {self._section.digest} was cancelled")
        future = asyncio.run_coroutine_threadsafe(
            self._section.read_at(buffer, self._position), self._loop
        )
        count = future.result()
        self._position += count
        return count


class TarArchive:
    """ArchiveReader backed by ``tarfile`` (plain or compressed tar layers)."""

    def __init__(
        self,
        section: LayerSection,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self.section = section
        self._loop = asyncio.get_running_loop()
        self._raw = SectionFile(section, self._loop)
        self._file = io.BufferedReader(self._raw, buffer_size)
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="layer-peek-tar"
        )
        self._tar: Optional[tarfile.TarFile] = None

    async def _run(self, func: Callable, *args):
        return await self._loop.run_in_executor(self._executor, func, *args)

    async def open(self) -> "TarArchive":
        self._tar = await self._run(self._open_sync)
        return self

    async def lookup(self, path: str) -> Optional[tarfile.TarInfo]:
        return await self._run(self._lookup_sync, normalize_path(path))

    async def read(self, entry: tarfile.TarInfo) -> bytes:
        return await self._run(self._read_sync, entry)

    async def close(self) -> None:
        self._raw.cancel()
        self._executor.shutdown(wait=False)

    def _open_sync(self) -> tarfile.TarFile:
        try:
            return tarfile.open(fileobj=self._file, mode="r:*")
        except tarfile.TarError as e:
            raise ArchiveError(
                f"Cannot read layer {self.section.digest} as tar: {e}"
            ) from e

    def _lookup_sync(self, name: str) -> Optional[tarfile.TarInfo]:
        # Later entries for the same name replace earlier ones
        found = None
        try:
            for member in self._tar:
                if normalize_path(member.name) == name:
                    found = member
        except (tarfile.TarError, EOFError, OSError, zlib.error) as e:
            raise ArchiveError(
                f"Cannot list layer {self.section.digest}: {e}"
            ) from e
        return found

    def _read_sync(self, entry: tarfile.TarInfo) -> bytes:
        try:
            file_obj = self._tar.extractfile(entry)
        except (tarfile.TarError, KeyError) as e:
            raise ArchiveError(f"Cannot extract {entry.name}: {e}") from e
        if file_obj is None:
            raise ArchiveError(f"{entry.name} is not a regular file")
        with file_obj:
            return file_obj.read()


async def open_tar_archive(section: LayerSection) -> TarArchive:
    """Open a layer section as a tar archive."""
    archive = TarArchive(section)
    try:
        return await archive.open()
    except BaseException:
        await archive.close()
        raise
