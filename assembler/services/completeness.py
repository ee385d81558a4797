import logging
from typing import Callable

logger = logging.getLogger(__name__)


def expected_chunk_count(chunk_size: int, total_size: int) -> int:
    """Number of chunks a file of ``total_size`` bytes is split into."""
    if chunk_size <= 0:
        return 0
    return total_size // chunk_size + (0 if total_size % chunk_size == 0 else 1)


class CompletenessOracle:
    """Decides whether every chunk of an upload has arrived."""

    def is_complete(self, chunk_size: int, total_size: int, is_present: Callable[[int], bool]) -> bool:
        """
        Check presence of chunks ``1..expected_chunk_count`` inclusive.

        The last chunk is checked like every other one. Read-only, safe to
        call any number of times.
        """
        if chunk_size <= 0:
            return False

        expected = expected_chunk_count(chunk_size, total_size)
        for chunk_number in range(1, expected + 1):
            if not is_present(chunk_number):
                logger.debug(f"Chunk {chunk_number}/{expected} not present yet")
                return False
        return True
