"""Worktree metadata models and stores."""

from .models import InitScriptStatus, RunMetadata
from .store import InMemoryMetadataStore, JsonMetadataStore, MetadataStore, sanitize_branch_name

__all__ = [
    "InitScriptStatus",
    "InMemoryMetadataStore",
    "JsonMetadataStore",
    "MetadataStore",
    "RunMetadata",
    "sanitize_branch_name",
]
