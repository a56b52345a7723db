"""Listening queries: the keywords each tenant tracks across sources."""

from src.queries.repository import QueriesRepository
from src.queries.schemas import Query, match_query, query_keywords

__all__ = ["QueriesRepository", "Query", "match_query", "query_keywords"]
