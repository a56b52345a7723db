"""Mention persistence for the sync service."""

from src.mentions.repository import MentionsRepository, PersistenceError

__all__ = ["MentionsRepository", "PersistenceError"]
