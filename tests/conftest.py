"""Pytest configuration and fixtures."""

from datetime import date
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import text

from ingest import EventIngestor
from line_api import LineApiError
from ranking import Notifier, RankingAggregator
from settings import Settings
from store import CounterStore, TABLE


class FakeLine:
    """Stand-in for LineClient that records calls instead of hitting the network."""

    def __init__(self, names=None):
        self.names = names or {}
        self.profile_calls = []
        self.pushes = []
        self.fail_profiles = False
        self.fail_push_to = set()

    def get_profile(self, user_id):
        self.profile_calls.append(("user", None, user_id))
        if self.fail_profiles:
            raise LineApiError("profile lookup failed", 500, '{"message":"boom"}')
        return self.names.get(user_id, f"name-{user_id}")

    def get_group_member_profile(self, group_id, user_id):
        self.profile_calls.append(("group", group_id, user_id))
        if self.fail_profiles:
            raise LineApiError("profile lookup failed", 404, '{"message":"Not found"}')
        return self.names.get(user_id, f"name-{user_id}")

    def push_text(self, to, text):
        if to in self.fail_push_to:
            raise LineApiError("push failed", 400, '{"message":"Invalid to"}')
        self.pushes.append((to, text))

    def verify_signature(self, raw_body, signature):
        return True, ""


@pytest.fixture
def store(tmp_path):
    s = CounterStore(f"sqlite:///{tmp_path / 'counter.db'}")
    s.init_schema()
    yield s
    s.dispose()


@pytest.fixture
def line():
    return FakeLine()


@pytest.fixture
def settings(tmp_path):
    return Settings(channel_token="test-token", database_url=f"sqlite:///{tmp_path / 'counter.db'}")


@pytest.fixture
def today():
    return date(2024, 1, 10)


@pytest.fixture
def ingestor(store, line, today):
    return EventIngestor(store, line, "💩", ZoneInfo("UTC"), clock=lambda: today)


@pytest.fixture
def aggregator(store, line):
    return RankingAggregator(store, Notifier(line))


def text_event(text, user_id="U1", group_id="G1", source_type=None):
    source = {"type": source_type or ("group" if group_id else "user")}
    if user_id:
        source["userId"] = user_id
    if group_id:
        source["groupId"] = group_id
    return {
        "type": "message",
        "replyToken": "rt",
        "source": source,
        "message": {"id": "m1", "type": "text", "text": text},
    }


def stored_dates(store):
    with store.engine.connect() as conn:
        rows = conn.execute(text(f"SELECT DISTINCT count_date FROM {TABLE} ORDER BY count_date")).all()
    return [date.fromisoformat(str(r[0])[:10]) for r in rows]
