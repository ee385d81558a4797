"""
Assembles stored chunks into the final artifact.

The merged bytes are written to a hidden temporary file in the upload root,
checked against the MIME allow-list, and only then renamed onto the final
filename. A rejected merge leaves nothing behind in the upload root and does
not touch the chunk directory.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Tuple

from assembler.exceptions import (
    ConfigurationError,
    DisallowedContentTypeError,
    StorageIOError,
    UploadValidationError,
)
from assembler.models.upload import RenameRule, ensure_safe_segment
from assembler.services.mime import MimeSniffer

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024

Sniffer = Callable[[Path], str]


class MergeEngine:
    """Concatenates chunks in numeric order and publishes the result."""

    def __init__(
        self,
        destination_root: os.PathLike,
        allowed_mime_types: Iterable[str],
        rename_rule: Optional[RenameRule] = None,
        sniffer: Optional[Sniffer] = None,
    ):
        self.destination_root = Path(destination_root)
        self.allowed_mime_types = frozenset(m.strip().lower() for m in allowed_mime_types if m.strip())
        if not self.allowed_mime_types:
            raise ConfigurationError("MIME allow-list must not be empty")
        self.rename_rule = rename_rule or RenameRule()

        # mkstemp creates 0600 files; published uploads get the usual umask-derived mode
        umask = os.umask(0)
        os.umask(umask)
        self.file_mode = 0o666 & ~umask

        if sniffer is None:
            sniffer = MimeSniffer()
        self.sniffer = sniffer

        try:
            self.destination_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Upload directory {self.destination_root} is not usable: {e}") from e

    def final_name(self, filename: str) -> str:
        name = self.rename_rule.apply(filename)
        try:
            return ensure_safe_segment(name, "final filename", allow_dots=True)
        except ValueError as e:
            raise UploadValidationError(f"Renamed file {name!r} is not a valid filename: {e}") from e

    def target_path(self, filename: str) -> Path:
        return self.destination_root / self.final_name(filename)

    def is_allowed(self, mime_type: str) -> bool:
        return mime_type.strip().lower() in self.allowed_mime_types

    def assemble(self, identifier: str, filename: str, chunks: Sequence[Tuple[int, Path]]) -> Path:
        """
        Merge ``chunks`` for ``identifier`` into the upload root.

        Returns the published path. Raises ``DisallowedContentTypeError`` when
        the merged content sniffs to a type outside the allow-list and
        ``StorageIOError`` when reading a chunk or writing the target fails.
        """
        ordered = sorted(chunks, key=lambda item: int(item[0]))
        target = self.target_path(filename)

        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".merging", dir=self.destination_root)
        except OSError as e:
            raise StorageIOError(f"Cannot create merge target: {e}", target) from e
        tmp_path = Path(tmp_name)

        published = False
        try:
            with os.fdopen(fd, "wb") as out_f:
                for chunk_number, chunk_path in ordered:
                    with open(chunk_path, "rb") as chunk_f:
                        shutil.copyfileobj(chunk_f, out_f, COPY_BUFFER_SIZE)
                out_f.flush()
                os.fsync(out_f.fileno())

            mime_type = self.sniffer(tmp_path)
            if not self.is_allowed(mime_type):
                logger.warning(f"Rejected merged upload {identifier}: content type {mime_type} not allowed")
                raise DisallowedContentTypeError(mime_type, target)

            os.chmod(tmp_path, self.file_mode)
            os.replace(tmp_path, target)
            published = True
        except OSError as e:
            logger.error(f"Merge of {identifier} into {target} failed: {e}")
            raise StorageIOError(f"Merge failed: {e}", target) from e
        finally:
            if not published:
                tmp_path.unlink(missing_ok=True)

        logger.info(f"Merged {len(ordered)} chunks of {identifier} into {target}")
        return target
