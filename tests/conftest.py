"""
Shared fixtures for chunk assembly tests.
"""

from pathlib import Path

import pytest

from assembler.models.upload import RenameRule
from assembler.services.chunk_store import ChunkStore
from assembler.services.coordinator import UploadCoordinator
from assembler.services.merge_engine import MergeEngine

MP4_HEADER = b"\x00\x00\x00\x18ftypmp42"


def mp4_bytes(size: int, fill: bytes = b"x") -> bytes:
    """Bytes of exactly ``size`` length that the fake sniffer reports as video/mp4."""
    body = MP4_HEADER + fill * size
    return body[:size]


class FakeSniffer:
    """Deterministic stand-in for libmagic keyed on an MP4 ``ftyp`` box."""

    def __init__(self):
        self.calls = []

    def __call__(self, path: Path) -> str:
        self.calls.append(path)
        with open(path, "rb") as f:
            head = f.read(len(MP4_HEADER))
        if head[4:8] == b"ftyp":
            return "video/mp4"
        return "application/octet-stream"


@pytest.fixture
def sniffer():
    return FakeSniffer()


@pytest.fixture
def chunk_root(tmp_path):
    return tmp_path / "chunks"


@pytest.fixture
def upload_root(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def store(chunk_root):
    return ChunkStore(chunk_root)


@pytest.fixture
def merge_engine(upload_root, sniffer):
    return MergeEngine(upload_root, ["video/mp4", "application/mp4"], RenameRule(), sniffer=sniffer)


@pytest.fixture
def coordinator(store, merge_engine):
    return UploadCoordinator(store, merge_engine, parameter_prefix="resumable")
