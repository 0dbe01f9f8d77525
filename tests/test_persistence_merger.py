"""
Tests for idempotent keyword and traffic upserts.

Guards against:
  - Duplicate rows when the same key is written twice
  - Unsupplied fields being blanked on update
  - Initial position not replacing an older value
  - One failing record rolling back its siblings
  - Monthly rollups drifting from the persisted daily records
"""
from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from gsc_sync.exceptions import PersistenceError
from gsc_sync.models.keyword_stats import KeywordDailyStat, KeywordMonthlyStat, SearchConsoleKeyword
from gsc_sync.models.traffic import SearchConsoleTrafficAnalytics, TrafficDaily, TrafficMonthly
from gsc_sync.services.dimension_aggregator import AggregatedRecord, KeywordMetrics
from gsc_sync.services.persistence_merger import PersistenceMerger

SITE = "https://example.com/"


@pytest.fixture
def merger(session_factory):
    return PersistenceMerger(session_factory)


def _count(session_factory, model):
    db = session_factory()
    try:
        return db.execute(select(func.count(model.id))).scalar_one()
    finally:
        db.close()


def _daily(session_factory, keyword, day):
    db = session_factory()
    try:
        return db.execute(
            select(KeywordDailyStat)
            .join(SearchConsoleKeyword)
            .where(SearchConsoleKeyword.keyword == keyword, KeywordDailyStat.date == day)
        ).scalar_one()
    finally:
        db.close()


# ────────────────────────────────────────────
# KEYWORD RECORDS
# ────────────────────────────────────────────


class TestKeywordUpserts:

    def test_same_key_twice_keeps_one_record(self, merger, session_factory):
        day = date(2025, 7, 1)
        merger.upsert_daily(SITE, "seo audit", day, average_rank=4.0, search_volume=100, clicks=3)
        merger.upsert_daily(SITE, "seo audit", day, average_rank=4.0, search_volume=100, clicks=3)

        assert _count(session_factory, KeywordDailyStat) == 1
        assert _count(session_factory, SearchConsoleKeyword) == 1

    def test_update_overwrites_supplied_fields_only(self, merger, session_factory):
        day = date(2025, 7, 1)
        merger.upsert_daily(SITE, "seo audit", day, average_rank=4.0, search_volume=100,
                            clicks=3, top_ranking_page_url="https://example.com/a")
        merger.upsert_daily(SITE, "seo audit", day, average_rank=6.5)

        stat = _daily(session_factory, "seo audit", day)
        assert stat.average_rank == pytest.approx(6.5)
        assert stat.search_volume == 100
        assert stat.top_ranking_page_url == "https://example.com/a"

    def test_unknown_field_is_rejected(self, merger):
        with pytest.raises(ValueError):
            merger.upsert_daily(SITE, "seo audit", date(2025, 7, 1), rank=3)

    def test_keywords_are_scoped_by_site(self, merger, session_factory):
        first = merger.ensure_keyword(SITE, "seo audit")
        second = merger.ensure_keyword("sc-domain:other.com", "seo audit")
        assert first != second
        assert merger.ensure_keyword(SITE, "seo audit") == first
        assert _count(session_factory, SearchConsoleKeyword) == 2

    def test_initial_position_is_replaced(self, merger, session_factory):
        merger.upsert_initial_position(SITE, "seo audit", 14.2)
        merger.upsert_initial_position(SITE, "seo audit", 9.75)

        db = session_factory()
        try:
            keyword = db.execute(select(SearchConsoleKeyword)).scalar_one()
        finally:
            db.close()
        assert keyword.initial_position == pytest.approx(9.75)
        assert keyword.initial_position_computed_at is not None

    def test_monthly_upsert(self, merger, session_factory):
        merger.upsert_monthly(SITE, "seo audit", 2025, 7, average_rank=3.0, search_volume=10, source="fetch")
        merger.upsert_monthly(SITE, "seo audit", 2025, 7, search_volume=20)

        db = session_factory()
        try:
            stat = db.execute(select(KeywordMonthlyStat)).scalar_one()
        finally:
            db.close()
        assert (stat.year, stat.month, stat.search_volume, stat.source) == (2025, 7, 20, "fetch")


# ────────────────────────────────────────────
# TRAFFIC RECORDS
# ────────────────────────────────────────────


class TestTrafficUpserts:

    def test_daily_and_monthly_share_one_parent(self, merger, session_factory):
        record = AggregatedRecord(key=None, clicks=5, impressions=50, position=7.0, ctr=0.1, row_count=1)
        merger.upsert_traffic_daily_batch(SITE, {date(2025, 7, 1): record, date(2025, 7, 2): record})
        merger.upsert_traffic_monthly_batch(SITE, {(2025, 6): record})
        merger.upsert_traffic_monthly_batch(SITE, {(2025, 6): record})

        assert _count(session_factory, SearchConsoleTrafficAnalytics) == 1
        assert _count(session_factory, TrafficDaily) == 2
        assert _count(session_factory, TrafficMonthly) == 1


# ────────────────────────────────────────────
# BATCHES
# ────────────────────────────────────────────


class TestBatches:

    def test_failed_record_does_not_roll_back_siblings(self, merger, session_factory):
        entries = {
            (date(2025, 7, 1), "seo audit"): KeywordMetrics(4.0, 100, 3, None),
            (date(2025, 7, 2), "seo audit"): KeywordMetrics(5.0, 80, 1, None),
            (date(2025, 7, 3), "seo audit"): KeywordMetrics(6.0, 60, 0, None),
        }
        real_upsert = merger._upsert

        def flaky_upsert(session, model, key_values, fields):
            if key_values.get("date") == date(2025, 7, 2):
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_upsert(session, model, key_values, fields)

        with patch.object(merger, "_upsert", side_effect=flaky_upsert):
            summary = merger.upsert_daily_batch(SITE, entries)

        assert summary.upserted == 2
        assert summary.failed == 1
        assert "database is locked" in summary.errors[0]
        assert _count(session_factory, KeywordDailyStat) == 2

    def test_write_failure_raises_persistence_error(self, merger):
        with patch.object(merger, "_upsert", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with pytest.raises(PersistenceError) as exc_info:
                merger.upsert_traffic_daily(SITE, date(2025, 7, 1), clicks=1)
        assert exc_info.value.entity == "traffic_daily"


# ────────────────────────────────────────────
# MONTHLY ROLLUP
# ────────────────────────────────────────────


class TestRollupMonthFromDaily:

    def test_rollup_uses_weighted_formula(self, merger, session_factory):
        merger.upsert_daily(SITE, "x", date(2025, 7, 1), average_rank=0.0, search_volume=0, clicks=0)
        merger.upsert_daily(SITE, "x", date(2025, 7, 2), average_rank=5.0, search_volume=100, clicks=2,
                            top_ranking_page_url="https://example.com/a")
        merger.upsert_daily(SITE, "x", date(2025, 7, 3), average_rank=10.0, search_volume=200, clicks=1,
                            top_ranking_page_url="https://example.com/b")
        # Other month, must not leak in
        merger.upsert_daily(SITE, "x", date(2025, 8, 1), average_rank=1.0, search_volume=1000, clicks=9)

        record = merger.rollup_month_from_daily(SITE, "x", 2025, 7)
        assert round(record.position, 2) == 8.33

        db = session_factory()
        try:
            stat = db.execute(select(KeywordMonthlyStat)).scalar_one()
        finally:
            db.close()
        assert stat.search_volume == 300
        assert stat.clicks == 3
        assert stat.top_ranking_page_url == "https://example.com/b"
        assert stat.source == "daily_rollup"
        assert stat.calc_window_days == 3

    def test_month_without_daily_records(self, merger):
        assert merger.rollup_month_from_daily(SITE, "x", 2025, 7) is None
