"""
Filesystem layout for uploaded chunks.

Chunks live at ``{root}/{identifier}/{filename}.part{N}``. A chunk file is
written once and never modified; it disappears only when the whole identifier
directory is removed after a successful merge.
"""

import errno
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

from assembler.exceptions import ConfigurationError, StorageIOError, UploadValidationError

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024


class ChunkStore:
    """Stores, lists and removes chunk files below a temporary root."""

    chunk_delimiter = ".part"

    def __init__(self, root: os.PathLike):
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Chunk directory {self.root} is not usable: {e}") from e

    def directory_path(self, identifier: str) -> Path:
        return self.root / identifier

    def chunk_path(self, identifier: str, filename: str, chunk_number: int) -> Path:
        return self.directory_path(identifier) / f"{filename}{self.chunk_delimiter}{chunk_number}"

    def directory_for(self, identifier: str) -> Path:
        """Return the chunk directory for ``identifier``, creating it if needed."""
        directory = self.directory_path(identifier)
        try:
            directory.mkdir(mode=0o777, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create chunk directory {directory}: {e}")
            raise StorageIOError(f"Cannot create chunk directory: {e}", directory) from e
        return directory

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def has_chunk(self, identifier: str, filename: str, chunk_number: int) -> bool:
        return self.exists(self.chunk_path(identifier, filename, chunk_number))

    def store(self, source: BinaryIO, destination: Path, expected_size: Optional[int] = None) -> bool:
        """
        Persist ``source`` at ``destination`` unless it is already there.

        Bytes are streamed into a hidden temporary file next to the destination
        and hard-linked into place, so a chunk path never points at a partially
        written file. Returns True when this call wrote the chunk, False when
        an earlier delivery already had.
        """
        if self.exists(destination):
            logger.debug(f"Chunk {destination.name} already stored, skipping")
            return False

        directory = destination.parent
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".incoming", dir=directory)
        except OSError as e:
            raise StorageIOError(f"Cannot open temporary chunk file: {e}", destination) from e

        tmp_path = Path(tmp_name)
        try:
            written = 0
            with os.fdopen(fd, "wb") as out_f:
                while True:
                    data = source.read(COPY_BUFFER_SIZE)
                    if not data:
                        break
                    out_f.write(data)
                    written += len(data)
                out_f.flush()
                os.fsync(out_f.fileno())

            if expected_size is not None and written != expected_size:
                raise UploadValidationError(
                    f"Chunk {destination.name} has {written} bytes, declared {expected_size}"
                )

            try:
                os.link(tmp_path, destination)
            except FileExistsError:
                # A concurrent delivery of the same chunk won the race.
                logger.debug(f"Chunk {destination.name} stored concurrently")
                return False
        except OSError as e:
            logger.error(f"Failed to store chunk {destination}: {e}")
            raise StorageIOError(f"Failed to store chunk: {e}", destination) from e
        finally:
            tmp_path.unlink(missing_ok=True)

        logger.info(f"Stored chunk {destination.name} ({written} bytes) in {directory.name}")
        return True

    def parse_chunk_number(self, name: str) -> Optional[int]:
        _, delimiter, suffix = name.rpartition(self.chunk_delimiter)
        if not delimiter or not suffix.isdigit():
            return None
        number = int(suffix)
        return number if number >= 1 else None

    def list_chunks(self, identifier: str, filename: Optional[str] = None) -> List[Tuple[int, Path]]:
        """
        Enumerate stored chunks as ``(chunk_number, path)`` in numeric order.

        Entries whose name does not end in ``.part<N>`` are skipped. When
        ``filename`` is given only that file's chunks are returned.
        """
        directory = self.directory_path(identifier)
        try:
            entries = list(os.scandir(directory))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageIOError(f"Cannot list chunk directory: {e}", directory) from e

        own_chunk = None
        if filename is not None:
            own_chunk = re.compile(rf"^{re.escape(filename)}{re.escape(self.chunk_delimiter)}(\d+)$")

        chunks = []
        for entry in entries:
            if not entry.is_file():
                continue
            if own_chunk is not None and not own_chunk.match(entry.name):
                continue
            number = self.parse_chunk_number(entry.name)
            if number is None:
                continue
            chunks.append((number, Path(entry.path)))
        chunks.sort(key=lambda item: item[0])
        return chunks

    def remove_directory(self, identifier: str) -> bool:
        """Recursively delete the chunk directory. Returns False if it was already gone."""
        directory = self.directory_path(identifier)
        for attempt in (1, 2):
            try:
                shutil.rmtree(directory)
                break
            except FileNotFoundError:
                return False
            except OSError as e:
                if e.errno == errno.ENOENT:
                    return False
                if e.errno == errno.ENOTEMPTY and attempt == 1:
                    # a late writer dropped a file in after rmtree listed the directory
                    logger.warning(f"Chunk directory {directory} changed during removal, retrying")
                    continue
                logger.error(f"Failed to remove chunk directory {directory}: {e}")
                raise StorageIOError(f"Failed to remove chunk directory: {e}", directory) from e
        logger.info(f"Removed chunk directory {directory}")
        return True
