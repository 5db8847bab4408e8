"""Content loading and management module."""

from src.content_loader.snippet_repository import (
    SnippetDataLoader,
    SnippetFileLoadResult,
    SnippetRecord,
    SnippetRepository,
    chaos_records,
    consequence_for_option,
    default_catalog,
    default_completion_tag,
)

__all__ = [
    "SnippetDataLoader",
    "SnippetFileLoadResult",
    "SnippetRecord",
    "SnippetRepository",
    "chaos_records",
    "consequence_for_option",
    "default_catalog",
    "default_completion_tag",
]
