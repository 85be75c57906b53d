"""Batch download: stream several files as one zip archive."""

import io
import logging
import zipfile
from collections.abc import Iterable, Iterator
from pathlib import PurePosixPath
from typing import Final, override

from server.apps.files.exceptions import FileServiceError
from server.apps.files.infrastructure.storage import ObjectStore
from server.apps.files.models import File

_COMPRESS_LEVEL: Final = 9

logger = logging.getLogger(__name__)


class _StreamSink(io.RawIOBase):
    """Write-only, non-seekable buffer drained after every write batch.

    zipfile falls back to data descriptors when it cannot seek, so the
    archive can be produced front to back.
    """

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[bytes] = []

    @override
    def writable(self) -> bool:
        return True

    @override
    def write(self, data: bytes) -> int:  # type: ignore[override]
        self._chunks.append(bytes(data))
        return len(data)

    def drain(self) -> bytes:
        data = b''.join(self._chunks)
        self._chunks.clear()
        return data


def _unique_name(name: str, taken: set[str]) -> str:
    """Suffix duplicate archive member names: 'a.txt' -> 'a (1).txt'."""
    if name not in taken:
        taken.add(name)
        return name

    path = PurePosixPath(name)
    counter = 1
    while True:
        candidate = f'{path.stem} ({counter}){path.suffix}'
        if candidate not in taken:
            taken.add(candidate)
            return candidate
        counter += 1


def stream_archive(store: ObjectStore, files: Iterable[File]) -> Iterator[bytes]:
    """Stream a zip archive containing the given files.

    Files whose object cannot be read are logged and left out. A read
    failure in the middle of a file leaves that member truncated.

    Args:
        store: Object store holding file contents.
        files: Files to include, in archive order.

    Yields:
        Consecutive byte chunks of the archive.
    """
    sink = _StreamSink()
    taken: set[str] = set()

    with zipfile.ZipFile(
        sink,
        mode='w',
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=_COMPRESS_LEVEL,
    ) as archive:
        for file_instance in files:
            chunks = store.iter_chunks(file_instance.storage_key)
            try:
                first_chunk = next(chunks, b'')
            except FileServiceError:
                logger.exception(
                    'Failed to add file %s to archive',
                    file_instance.id,
                )
                continue

            name = _unique_name(file_instance.full_name, taken)
            with archive.open(name, mode='w', force_zip64=True) as member:
                member.write(first_chunk)
                try:
                    for chunk in chunks:
                        member.write(chunk)
                        yield sink.drain()
                except FileServiceError:
                    logger.exception(
                        'Archive member truncated: %s (file %s)',
                        name,
                        file_instance.id,
                    )
            yield sink.drain()

    yield sink.drain()
