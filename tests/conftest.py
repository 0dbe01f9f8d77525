"""
Shared fixtures: an in-memory SQLite database and a scripted Search Console.
"""
import asyncio
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gsc_sync import models  # noqa: F401  (registers tables)
from gsc_sync.exceptions import ExternalFetchError
from gsc_sync.models.base import Base
from gsc_sync.models.campaign import Campaign
from gsc_sync.services.dimension_aggregator import SearchAnalyticsRow


def run(coro):
    """Run a coroutine to completion from a sync test"""
    return asyncio.run(coro)


def gsc_row(*keys, clicks=0, impressions=0, position=None, ctr=None):
    """Raw API row dict"""
    row = {"keys": list(keys), "clicks": clicks, "impressions": impressions}
    if position is not None:
        row["position"] = position
    row["ctr"] = ctr if ctr is not None else (clicks / impressions if impressions else 0.0)
    return row


class FakeSearchConsole:
    """
    Stand-in for SearchConsoleConnector.get_analytics.

    ``rows`` maps a dimension tuple to raw API rows; rows are filtered to the
    requested date range when the first key is a date. ``fail`` decides
    whether a call raises (return an exception instance to raise it).
    """

    def __init__(
        self,
        rows: Optional[Dict[tuple, List[dict]]] = None,
        fail: Optional[Callable[[date, date, tuple], Optional[Exception]]] = None,
        on_call: Optional[Callable[["FakeSearchConsole"], None]] = None
    ):
        self.rows = rows or {}
        self.fail = fail
        self.on_call = on_call
        self.calls = []

    async def get_analytics(self, site_url, start_date, end_date, dimensions: Sequence[str], wait_for_all_data=False):
        dims = tuple(dimensions)
        self.calls.append((site_url, start_date, end_date, dims))
        if self.on_call is not None:
            self.on_call(self)
        if self.fail is not None:
            error = self.fail(start_date, end_date, dims)
            if error is not None:
                raise error

        selected = []
        for raw in self.rows.get(dims, []):
            if dims[0] == "date":
                day = date.fromisoformat(raw["keys"][0])
                if not start_date <= day <= end_date:
                    continue
            selected.append(SearchAnalyticsRow.from_api(raw))
        return selected or None

    def calls_for(self, dims: Sequence[str]):
        return [call for call in self.calls if call[3] == tuple(dims)]


def fail_when(predicate, error: Exception = None):
    """``fail`` callback raising ``error`` (ExternalFetchError by default) when predicate matches"""
    error = error or ExternalFetchError("Search Console fetch failed: HTTP 503")

    def fail(start_date, end_date, dims):
        return error if predicate(start_date, end_date, dims) else None

    return fail


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def make_campaign(session_factory):
    def _make(
        keywords="seo audit\nsite audit",
        start_date=date(2025, 2, 10),
        site_url="https://example.com/",
        name="Example",
        is_active=True
    ) -> int:
        db = session_factory()
        try:
            campaign = Campaign(
                name=name,
                site_url=site_url,
                keywords=keywords,
                start_date=start_date,
                is_active=is_active,
            )
            db.add(campaign)
            db.commit()
            return campaign.id
        finally:
            db.close()

    return _make
