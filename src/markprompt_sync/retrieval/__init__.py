"""Retrieval package."""

from markprompt_sync.retrieval.sections import SectionRetriever

__all__ = ["SectionRetriever"]
