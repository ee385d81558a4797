"""
Per-request orchestration of chunk storage, completeness and merge.

Every delivery stores its chunk, checks completeness, merges and removes the
chunk directory under a lock keyed by upload identifier. Two deliveries that
both complete an upload cannot merge it twice, and a chunk that arrives after
the upload was published is answered from the published file instead of
recreating the chunk directory.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from stat import S_ISREG
from typing import BinaryIO, Dict, Iterator, Optional

from assembler.config import settings
from assembler.exceptions import DisallowedContentTypeError, StorageIOError, UploadValidationError
from assembler.models.upload import (
    ChunkRequest,
    UploadOutcome,
    UploadResult,
    UploadSession,
    UploadStatus,
    ensure_safe_segment,
    normalize_parameters,
)
from assembler.services.chunk_store import ChunkStore
from assembler.services.completeness import CompletenessOracle, expected_chunk_count
from assembler.services.merge_engine import MergeEngine

logger = logging.getLogger(__name__)


class IdentifierLocks:
    """Reference-counted registry of one lock per upload identifier."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, int] = {}

    @contextmanager
    def hold(self, identifier: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(identifier, threading.Lock())
            self._holders[identifier] = self._holders.get(identifier, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[identifier] -= 1
                if not self._holders[identifier]:
                    del self._holders[identifier]
                    del self._locks[identifier]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class UploadCoordinator:
    """Turns one inbound chunk or probe request into an ``UploadOutcome``."""

    def __init__(
        self,
        store: ChunkStore,
        merge_engine: MergeEngine,
        oracle: Optional[CompletenessOracle] = None,
        parameter_prefix: Optional[str] = None,
        max_total_size: Optional[int] = None,
        max_chunk_size: Optional[int] = None,
    ):
        self.store = store
        self.merge_engine = merge_engine
        self.oracle = oracle or CompletenessOracle()
        self.parameter_prefix = parameter_prefix
        self.max_total_size = max_total_size
        self.max_chunk_size = max_chunk_size
        self._locks = IdentifierLocks()

    def handle(self, request: ChunkRequest) -> UploadResult:
        parameters = normalize_parameters(request.parameters, self.parameter_prefix)
        if not parameters:
            logger.debug("Request carries no recognized upload parameters, nothing to do")
            return UploadResult(outcome=UploadOutcome.NO_OP)

        session = UploadSession.from_parameters(parameters)
        self._check_limits(session)

        if not request.has_payload:
            return self.probe(session)
        return self.deliver(session, request.payload)

    def _check_limits(self, session: UploadSession) -> None:
        if self.max_total_size is not None and session.total_size > self.max_total_size:
            raise UploadValidationError(
                f"Declared total size {session.total_size} exceeds limit {self.max_total_size}"
            )
        if self.max_chunk_size is not None and session.chunk_size > self.max_chunk_size:
            raise UploadValidationError(
                f"Declared chunk size {session.chunk_size} exceeds limit {self.max_chunk_size}"
            )

    def probe(self, session: UploadSession) -> UploadResult:
        """Report whether the chunk named by ``session`` is already stored."""
        identifier = session.identifier
        present = self.store.has_chunk(identifier, session.filename, session.chunk_number)
        if not present:
            with self._locks.hold(identifier):
                present = self._published_artifact(session) is not None
        return UploadResult(
            outcome=UploadOutcome.PROBE_HIT if present else UploadOutcome.PROBE_MISS,
            identifier=identifier,
            chunk_number=session.chunk_number,
        )

    def deliver(self, session: UploadSession, payload: BinaryIO) -> UploadResult:
        """Store one chunk and, if it completes the upload, merge and clean up."""
        identifier = session.identifier
        with self._locks.hold(identifier):
            published = self._published_artifact(session)
            if published is not None:
                logger.info(f"Upload {identifier} already published at {published}, chunk {session.chunk_number} ignored")
                return UploadResult(
                    outcome=UploadOutcome.UPLOAD_COMPLETE,
                    identifier=identifier,
                    chunk_number=session.chunk_number,
                    final_path=str(published),
                )

            try:
                self.store.directory_for(identifier)
                destination = self.store.chunk_path(identifier, session.filename, session.chunk_number)
                self.store.store(payload, destination, expected_size=session.current_chunk_size)
            except StorageIOError as e:
                return self._failure(session, UploadOutcome.IO_FAILURE, str(e))

            complete = self.oracle.is_complete(
                session.chunk_size,
                session.total_size,
                lambda n: self.store.has_chunk(identifier, session.filename, n),
            )
            if not complete:
                return UploadResult(
                    outcome=UploadOutcome.CHUNK_ACCEPTED,
                    identifier=identifier,
                    chunk_number=session.chunk_number,
                )
            return self._finish(session)

    def _published_artifact(self, session: UploadSession) -> Optional[Path]:
        """
        Return the final file if this upload was already merged and cleaned up.

        A finished upload has no chunk directory and a published file of the
        declared total size. Must be called while holding the identifier lock.
        """
        if self.store.directory_path(session.identifier).exists():
            return None
        target = self.merge_engine.target_path(session.filename)
        try:
            stat = target.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageIOError(f"Cannot inspect published file: {e}", target) from e
        if not S_ISREG(stat.st_mode) or stat.st_size != session.total_size:
            return None
        return target

    def _finish(self, session: UploadSession) -> UploadResult:
        identifier = session.identifier
        try:
            chunks = self.store.list_chunks(identifier, session.filename)
            expected = expected_chunk_count(session.chunk_size, session.total_size)
            if expected:
                chunks = [(number, path) for number, path in chunks if number <= expected]
            final_path = self.merge_engine.assemble(identifier, session.filename, chunks)
        except DisallowedContentTypeError as e:
            return self._failure(session, UploadOutcome.DISALLOWED_CONTENT_TYPE, str(e))
        except StorageIOError as e:
            return self._failure(session, UploadOutcome.IO_FAILURE, str(e))

        if not final_path.is_file():
            return self._failure(session, UploadOutcome.IO_FAILURE, f"Merged file {final_path} is missing")

        try:
            self.store.remove_directory(identifier)
        except StorageIOError as e:
            # The artifact is published; the next completed delivery re-merges and retries cleanup.
            return self._failure(session, UploadOutcome.IO_FAILURE, str(e))

        logger.info(f"Upload {identifier} finished: {final_path}")
        return UploadResult(
            outcome=UploadOutcome.UPLOAD_COMPLETE,
            identifier=identifier,
            chunk_number=session.chunk_number,
            final_path=str(final_path),
        )

    def _failure(self, session: UploadSession, outcome: UploadOutcome, detail: str) -> UploadResult:
        if outcome == UploadOutcome.DISALLOWED_CONTENT_TYPE:
            logger.warning(f"Upload {session.identifier} rejected: {detail}")
        else:
            logger.error(f"Upload {session.identifier} chunk {session.chunk_number} failed: {detail}")
        return UploadResult(
            outcome=outcome,
            identifier=session.identifier,
            chunk_number=session.chunk_number,
            detail=detail,
        )

    def _checked_identifier(self, identifier: str) -> str:
        try:
            return ensure_safe_segment(identifier, "identifier", allow_dots=False)
        except ValueError as e:
            raise UploadValidationError(str(e)) from e

    def status(self, identifier: str, filename: Optional[str] = None) -> UploadStatus:
        identifier = self._checked_identifier(identifier)
        chunks = self.store.list_chunks(identifier, filename)
        return UploadStatus(
            identifier=identifier,
            exists=self.store.directory_path(identifier).is_dir(),
            received_chunks=[number for number, _ in chunks],
        )

    def cancel(self, identifier: str) -> bool:
        """Drop every stored chunk of ``identifier``."""
        identifier = self._checked_identifier(identifier)
        with self._locks.hold(identifier):
            removed = self.store.remove_directory(identifier)
        if removed:
            logger.info(f"Cancelled upload {identifier}")
        return removed


def build_coordinator() -> UploadCoordinator:
    """Construct a coordinator from the global settings."""
    store = ChunkStore(settings.chunk_tmp_dir)
    merge_engine = MergeEngine(
        settings.upload_dir,
        settings.allowed_mime_types,
        rename_rule=settings.rename_rule(),
    )
    return UploadCoordinator(
        store,
        merge_engine,
        parameter_prefix=settings.parameter_prefix,
        max_total_size=settings.max_upload_size_bytes,
        max_chunk_size=settings.max_chunk_size_bytes,
    )


# Global coordinator instance, created at startup
upload_coordinator: Optional[UploadCoordinator] = None


def init_upload_coordinator() -> UploadCoordinator:
    """Initialize global coordinator; raises ConfigurationError on bad setup"""
    global upload_coordinator
    if upload_coordinator is None:
        upload_coordinator = build_coordinator()
        logger.info(
            f"Upload coordinator ready: chunks in {settings.chunk_tmp_dir}, uploads in {settings.upload_dir}"
        )
    return upload_coordinator


def shutdown_upload_coordinator() -> None:
    global upload_coordinator
    upload_coordinator = None


def get_upload_coordinator() -> UploadCoordinator:
    """Get global coordinator instance, initializing it on first use"""
    return upload_coordinator or init_upload_coordinator()
