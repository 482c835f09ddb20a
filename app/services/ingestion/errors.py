"""Shared error classes for the ingestion pipeline and repositories."""

from __future__ import annotations


class IngestionError(RuntimeError):
    """Base exception raised by the ingestion pipeline."""

    def __init__(self, message: str, code: str = "INGESTION_ERROR") -> None:
        super().__init__(message)
        self.code = code


class SourceFetchError(IngestionError):
    """Raised when a single source cannot be fetched or parsed."""


class ExtractionError(IngestionError):
    """Raised when one extraction step fails for an article."""


class AnalyzerError(IngestionError):
    """Raised when the article analyzer fails or returns unusable output."""


class RepositoryError(IngestionError):
    """Raised when the entity store fails to save or retrieve records."""
