"""Server-side assembly of resumable chunked uploads."""

__version__ = "1.0.0"
