"""Storage abstractions for init script events."""

from .chroma import ChromaEventLog, ChromaUnavailableError, EventLogWriter, InitEventRecord

__all__ = [
    "ChromaEventLog",
    "ChromaUnavailableError",
    "EventLogWriter",
    "InitEventRecord",
]
