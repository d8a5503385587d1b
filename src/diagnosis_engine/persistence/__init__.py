"""Persistence contracts and the in-memory reference implementation."""

from diagnosis_engine.persistence.memory import InMemoryRepository
from diagnosis_engine.persistence.repository import Repository

__all__ = ["InMemoryRepository", "Repository"]
