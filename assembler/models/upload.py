from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from assembler.exceptions import UploadValidationError

# Canonical request field names, after the vendor prefix is stripped.
CANONICAL_PARAMETERS = (
    "identifier",
    "filename",
    "chunkNumber",
    "chunkSize",
    "totalSize",
    "currentChunkSize",
    "relativePath",
    "type",
)

_SEPARATORS = re.compile(r"[/\\\x00]")


def ensure_safe_segment(value: str, field_name: str, allow_dots: bool) -> str:
    if not value or not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    if _SEPARATORS.search(value):
        raise ValueError(f"{field_name} must not contain path separators")
    if value in (".", "..") or (not allow_dots and ".." in value):
        raise ValueError(f"{field_name} must not contain traversal sequences")
    return value


def normalize_parameters(parameters: Mapping[str, object], prefix: Optional[str] = None) -> Dict[str, object]:
    """
    Rewrite vendor-prefixed field names to canonical ones.

    ``resumableChunkNumber`` becomes ``chunkNumber`` when the prefix is
    ``resumable``. Unrecognized names are dropped.
    """
    normalized: Dict[str, object] = {}
    for name, value in parameters.items():
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
        if not name:
            continue
        name = name[0].lower() + name[1:]
        if name in CANONICAL_PARAMETERS:
            normalized[name] = value
    return normalized


class UploadSession(BaseModel):
    """Identifying fields of one chunk request for one logical upload."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    identifier: str
    filename: str
    chunk_number: int = Field(ge=1)
    # Non-positive sizes are accepted here; completeness can never hold for them.
    chunk_size: int
    total_size: int = Field(ge=0)
    current_chunk_size: Optional[int] = Field(default=None, ge=0)
    relative_path: Optional[str] = None

    @field_validator("identifier")
    @classmethod
    def _safe_identifier(cls, v: str) -> str:
        return ensure_safe_segment(v, "identifier", allow_dots=False)

    @field_validator("filename")
    @classmethod
    def _safe_filename(cls, v: str) -> str:
        return ensure_safe_segment(v, "filename", allow_dots=True)

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, object]) -> "UploadSession":
        """Build a session from canonical (already normalized) parameters."""
        data = {
            "identifier": parameters.get("identifier"),
            "filename": parameters.get("filename"),
            "chunk_number": parameters.get("chunkNumber"),
            "chunk_size": parameters.get("chunkSize"),
            "total_size": parameters.get("totalSize"),
            "current_chunk_size": parameters.get("currentChunkSize") or None,
            "relative_path": parameters.get("relativePath") or None,
        }
        try:
            return cls(**data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}" for err in e.errors()
            )
            raise UploadValidationError(f"Invalid upload parameters: {problems}") from e


class RenameRule(BaseModel):
    """
    How the declared filename becomes the published filename.

    A fixed ``final_name`` replaces the stem and wins over ``pattern``; a
    ``pattern`` is a regular expression substituted on the stem. The original
    extension is always reattached.
    """

    model_config = ConfigDict(frozen=True)

    pattern: Optional[str] = None
    replacement: str = ""
    final_name: Optional[str] = None

    def apply(self, filename: str) -> str:
        stem, dot, extension = filename.rpartition(".")
        if not dot or not stem:
            stem, extension = filename, ""

        if self.final_name:
            stem = self.final_name
        elif self.pattern:
            stem = re.sub(self.pattern, self.replacement, stem)

        return f"{stem}.{extension}" if extension else stem


class UploadOutcome(str, Enum):
    """Closed set of results handed to the transport adapter."""
    CHUNK_ACCEPTED = "chunk_accepted"
    UPLOAD_COMPLETE = "upload_complete"
    PROBE_HIT = "probe_hit"
    PROBE_MISS = "probe_miss"
    DISALLOWED_CONTENT_TYPE = "disallowed_content_type"
    IO_FAILURE = "io_failure"
    NO_OP = "no_op"

    @property
    def status_code(self) -> int:
        return _OUTCOME_STATUS[self]


_OUTCOME_STATUS = {
    UploadOutcome.PROBE_MISS: 204,
    UploadOutcome.PROBE_HIT: 200,
    UploadOutcome.CHUNK_ACCEPTED: 201,
    UploadOutcome.UPLOAD_COMPLETE: 201,
    UploadOutcome.DISALLOWED_CONTENT_TYPE: 415,
    UploadOutcome.IO_FAILURE: 500,
    UploadOutcome.NO_OP: 200,
}


class UploadResult(BaseModel):
    outcome: UploadOutcome
    identifier: Optional[str] = None
    chunk_number: Optional[int] = None
    final_path: Optional[str] = None
    detail: Optional[str] = None


class UploadStatus(BaseModel):
    """Chunks currently held for an identifier."""
    identifier: str
    exists: bool
    received_chunks: List[int] = Field(default_factory=list)


@dataclass
class ChunkRequest:
    """Transport-agnostic view of one inbound request."""
    parameters: Mapping[str, object] = field(default_factory=dict)
    payload: Optional[BinaryIO] = None

    @property
    def has_payload(self) -> bool:
        return self.payload is not None
