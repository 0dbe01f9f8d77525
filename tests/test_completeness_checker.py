"""
Tests for completeness checks.

Guards against:
  - A month counted complete while some keyword-days are missing
  - Checkpoints trusted after the keyword list changed
  - Daily targets skipped when only one of keyword/site records exists
"""
from datetime import date

import pytest

from gsc_sync.models.sync_state import SyncCheckpoint
from gsc_sync.services.completeness_checker import (
    FLOW_BACKFILL,
    CompletenessChecker,
    MonthScope,
    SiteDayScope,
    keywords_digest,
)
from gsc_sync.services.date_windows import DateWindow
from gsc_sync.services.persistence_merger import PersistenceMerger

SITE = "https://example.com/"
WINDOW = DateWindow(date(2025, 7, 1), date(2025, 7, 4))  # 3 days


@pytest.fixture
def checker(session_factory):
    return CompletenessChecker(session_factory)


@pytest.fixture
def merger(session_factory):
    return PersistenceMerger(session_factory)


def _fill(merger, keywords, window, **fields):
    fields = fields or {"average_rank": 3.0, "search_volume": 10, "clicks": 1}
    for keyword in keywords:
        for day in window.iter_days():
            merger.upsert_daily(SITE, keyword, day, **fields)


# ────────────────────────────────────────────
# MONTH SCOPE
# ────────────────────────────────────────────


class TestMonthComplete:

    def test_empty_store_is_incomplete(self, checker):
        assert not checker.is_month_complete(SITE, ["a", "b"], WINDOW)

    def test_every_keyword_day_present_is_complete(self, checker, merger):
        _fill(merger, ["a", "b"], WINDOW)
        assert checker.is_month_complete(SITE, ["a", "b"], WINDOW)

    def test_one_missing_day_is_incomplete(self, checker, merger):
        _fill(merger, ["a"], WINDOW)
        _fill(merger, ["b"], DateWindow(date(2025, 7, 1), date(2025, 7, 3)))
        assert not checker.is_month_complete(SITE, ["a", "b"], WINDOW)

    def test_record_without_rank_or_page_is_not_usable(self, checker, merger):
        _fill(merger, ["a"], WINDOW, search_volume=10)
        assert not checker.is_month_complete(SITE, ["a"], WINDOW)

    def test_zero_filled_day_counts(self, checker, merger):
        _fill(merger, ["a"], WINDOW, average_rank=0.0, search_volume=0, clicks=0)
        assert checker.is_month_complete(SITE, ["a"], WINDOW)

    def test_no_keywords_is_trivially_complete(self, checker):
        assert checker.is_month_complete(SITE, [], WINDOW)

    def test_other_site_records_do_not_count(self, checker, merger):
        _fill(merger, ["a"], WINDOW)
        assert not checker.is_month_complete("sc-domain:other.com", ["a"], WINDOW)

    def test_dispatch_by_scope_type(self, checker, merger):
        _fill(merger, ["a"], WINDOW)
        assert checker.is_complete(MonthScope(SITE, ("a",), WINDOW))
        assert not checker.is_complete(SiteDayScope(SITE, date(2025, 7, 1)))


# ────────────────────────────────────────────
# CHECKPOINTS
# ────────────────────────────────────────────


class TestCheckpoints:

    def test_complete_month_is_checkpointed(self, checker, merger):
        _fill(merger, ["a"], WINDOW)
        assert checker.is_month_complete(SITE, ["a"], WINDOW, campaign_id=7)

        checkpoints = checker.checkpoints(7)
        assert len(checkpoints) == 1
        assert checkpoints[0].flow == FLOW_BACKFILL
        assert checkpoints[0].scope == "2025-07-01..2025-07-03"
        assert checkpoints[0].keywords_digest == keywords_digest(["a"])

    def test_checkpoint_short_circuits_the_scan(self, checker):
        checker.mark_complete(7, FLOW_BACKFILL, WINDOW.label, ["a"])
        assert checker.is_month_complete(SITE, ["a"], WINDOW, campaign_id=7)

    def test_checkpoint_ignored_after_keyword_change(self, checker):
        checker.mark_complete(7, FLOW_BACKFILL, WINDOW.label, ["a"])
        assert not checker.is_month_complete(SITE, ["a", "b"], WINDOW, campaign_id=7)

    def test_digest_ignores_order_and_duplicates(self):
        assert keywords_digest(["b", "a", "a"]) == keywords_digest(["a", "b"])

    def test_mark_complete_twice_keeps_one_row(self, checker, session_factory):
        checker.mark_complete(7, FLOW_BACKFILL, WINDOW.label, ["a"])
        checker.mark_complete(7, FLOW_BACKFILL, WINDOW.label, ["a", "b"])

        db = session_factory()
        try:
            rows = db.query(SyncCheckpoint).all()
        finally:
            db.close()
        assert len(rows) == 1
        assert rows[0].keywords_digest == keywords_digest(["a", "b"])


# ────────────────────────────────────────────
# DAILY / INITIAL POSITION SCOPES
# ────────────────────────────────────────────


class TestDailyAndInitialPosition:

    def test_daily_target_needs_keywords_and_site(self, checker, merger):
        day = date(2025, 7, 1)
        _fill(merger, ["a"], DateWindow(day, date(2025, 7, 2)))
        assert not checker.is_daily_target_complete(SITE, ["a"], day)

        merger.upsert_traffic_daily(SITE, day, clicks=1, impressions=10, ctr=0.1, position=4.0)
        assert checker.is_site_day_complete(SITE, day)
        assert checker.is_daily_target_complete(SITE, ["a"], day)

    def test_site_only_target_is_incomplete_when_keywords_missing(self, checker, merger):
        day = date(2025, 7, 1)
        merger.upsert_traffic_daily(SITE, day, clicks=1, impressions=10, ctr=0.1, position=4.0)
        assert not checker.is_daily_target_complete(SITE, ["a"], day)

    def test_initial_position_needs_every_keyword(self, checker, merger):
        merger.upsert_initial_position(SITE, "a", 5.0)
        assert checker.is_initial_position_complete(SITE, ["a"])
        assert not checker.is_initial_position_complete(SITE, ["a", "b"])
