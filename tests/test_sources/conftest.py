"""Shared fixtures for sources tests."""

from datetime import datetime, timezone

import pytest


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for a source."""
    return {
        "id": "22222222-2222-2222-2222-222222222222",
        "tenant_id": 3,
        "platform": "reddit",
        "name": "r/saas monitor",
        "credentials": '{"access_token": "abc"}',
        "config": {"subreddits": ["saas"]},
        "status": "connected",
        "last_sync_at": datetime(2025, 6, 2, 11, 0, tzinfo=timezone.utc),
        "sync_interval_minutes": 30,
        "error_message": None,
        "rate_limit_remaining": 120,
        "rate_limit_reset_at": None,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }
