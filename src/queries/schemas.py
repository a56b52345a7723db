"""Data models for the queries module."""

from dataclasses import dataclass, field


@dataclass
class Query:
    """A tenant's listening query: a named set of keywords to track."""

    id: str
    tenant_id: int
    name: str = ""
    keywords: list[str] = field(default_factory=list)
    is_active: bool = True

    def matches(self, content: str) -> bool:
        """Whether any keyword appears in ``content`` (case-insensitive)."""
        text = content.lower()
        return any(kw.lower() in text for kw in self.keywords if kw)


def query_keywords(queries: list[Query]) -> list[str]:
    """Keywords of all queries, deduplicated in first-seen order."""
    keywords: list[str] = []
    seen: set[str] = set()
    for q in queries:
        for kw in q.keywords:
            kw = kw.strip()
            if kw and kw not in seen:
                seen.add(kw)
                keywords.append(kw)
    return keywords


def match_query(queries: list[Query], content: str) -> Query | None:
    """First query whose keywords appear in the content."""
    for q in queries:
        if q.matches(content):
            return q
    return None
