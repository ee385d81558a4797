from assembler.models.upload import (
    ChunkRequest,
    RenameRule,
    UploadOutcome,
    UploadResult,
    UploadSession,
    UploadStatus,
    normalize_parameters,
)

__all__ = [
    "ChunkRequest",
    "RenameRule",
    "UploadOutcome",
    "UploadResult",
    "UploadSession",
    "UploadStatus",
    "normalize_parameters",
]
