"""Durable storage of sidecar annotations."""

from .store import AnnotationStore, SqlAnnotationStore

__all__ = ["AnnotationStore", "SqlAnnotationStore"]
