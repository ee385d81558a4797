"""
Content-type detection for merged artifacts, backed by libmagic.
"""

import logging
from pathlib import Path

from assembler.exceptions import ConfigurationError, StorageIOError

try:
    import magic
    MAGIC_AVAILABLE = True
except ImportError:
    # python-magic raises ImportError when libmagic itself is missing
    magic = None
    MAGIC_AVAILABLE = False

logger = logging.getLogger(__name__)


class MimeSniffer:
    """Detects MIME types from file content, never from the filename."""

    def __init__(self):
        if not MAGIC_AVAILABLE:
            raise ConfigurationError(
                "python-magic/libmagic is not available; content type sniffing is required"
            )
        self._magic = magic.Magic(mime=True)

    def __call__(self, path: Path) -> str:
        try:
            mime_type = self._magic.from_file(str(path))
        except magic.MagicException as e:
            raise StorageIOError(f"Cannot detect content type: {e}", path) from e
        logger.debug(f"Sniffed {path.name} as {mime_type}")
        return mime_type
