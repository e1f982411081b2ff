"""
Persistence: repository interface, in-memory and PostgreSQL implementations.
"""

from .memory import InMemoryRepository
from .repository import Repository

__all__ = ["InMemoryRepository", "Repository"]
