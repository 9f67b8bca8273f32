"""Repository interfaces and their in-memory and SQLAlchemy implementations."""

from .interfaces import RepositoryContainer, SessionGuard, Transaction

__all__ = ["RepositoryContainer", "SessionGuard", "Transaction"]
