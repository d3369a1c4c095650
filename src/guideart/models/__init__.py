"""Pydantic models for guideart."""

from guideart.models.images import ImageCandidate, IndexEntry, ProgramMetadata, Token

__all__ = [
    "ImageCandidate",
    "IndexEntry",
    "ProgramMetadata",
    "Token",
]
