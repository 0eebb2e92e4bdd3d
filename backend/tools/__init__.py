"""Collaborator tools for ScriptForge stages."""

from .web_search import search_web, format_sources

__all__ = [
    "search_web",
    "format_sources",
]
