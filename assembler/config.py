import json
import os
import re
from typing import List, Optional

from assembler.exceptions import ConfigurationError
from assembler.models.upload import RenameRule

DEFAULT_ALLOWED_MIME_TYPES = [
    "application/mp4",
    "video/mp4",
    "video/x-msvideo",
]


def _parse_list(raw: str, default: List[str]) -> List[str]:
    """Accepts a JSON list or a comma-separated string."""
    raw = raw.strip()
    if not raw:
        return list(default)
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return list(default)
        return [str(v).strip() for v in values if str(v).strip()]
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings:
    """Application settings"""
    def __init__(self):
        self.app_name: str = os.getenv("APP_NAME", "Chunk Assembler")
        self.app_version: str = os.getenv("APP_VERSION", "1.0.0")
        self.debug: bool = os.getenv("DEBUG", "false").lower() == "true"
        self.host: str = os.getenv("HOST", "0.0.0.0")
        self.port: int = int(os.getenv("PORT", "8000"))

        # API settings
        self.api_v1_prefix: str = os.getenv("API_V1_PREFIX", "/v1")

        # Logging settings
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")

        # Development settings
        cors_origins_str = os.getenv("CORS_ORIGINS", '["http://localhost:3000", "http://localhost:8080"]')
        try:
            self.cors_origins = json.loads(cors_origins_str) if cors_origins_str.startswith('[') else ["*"]
        except (json.JSONDecodeError, ValueError):
            self.cors_origins = ["*"]

        # Upload settings
        self.chunk_tmp_dir: str = os.getenv("CHUNK_TMP_DIR", "/tmp/chunk_assembler/chunks")
        self.upload_dir: str = os.getenv("UPLOAD_DIR", "/tmp/chunk_assembler/uploads")
        self.max_upload_size_gb: int = int(os.getenv("MAX_UPLOAD_SIZE_GB", "20"))
        self.max_chunk_size_mb: int = int(os.getenv("MAX_CHUNK_SIZE_MB", "64"))
        self.allowed_mime_types: List[str] = _parse_list(
            os.getenv("ALLOWED_MIME_TYPES", ""), DEFAULT_ALLOWED_MIME_TYPES
        )

        # Final filename rules
        self.rename_pattern: Optional[str] = os.getenv("RENAME_PATTERN") or None
        self.rename_replacement: str = os.getenv("RENAME_REPLACEMENT", "")
        self.final_filename: Optional[str] = os.getenv("FINAL_FILENAME") or None

        # Resumable.js sends "resumableIdentifier", "resumableChunkNumber", ...
        self.parameter_prefix: Optional[str] = os.getenv("PARAMETER_PREFIX", "resumable") or None

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_gb * 1024 * 1024 * 1024

    @property
    def max_chunk_size_bytes(self) -> int:
        return self.max_chunk_size_mb * 1024 * 1024

    def rename_rule(self) -> RenameRule:
        """Build the final-filename rule, validating the regex once."""
        if self.rename_pattern:
            try:
                re.compile(self.rename_pattern)
            except re.error as e:
                raise ConfigurationError(f"Invalid RENAME_PATTERN {self.rename_pattern!r}: {e}") from e
        return RenameRule(
            pattern=self.rename_pattern,
            replacement=self.rename_replacement,
            final_name=self.final_filename,
        )


# Global settings instance
settings = Settings()
