"""Database models for the Search Console sync engine"""

from gsc_sync.models.campaign import (
    Campaign,
    GoogleAccount,
    parse_keywords
)

from gsc_sync.models.keyword_stats import (
    SearchConsoleKeyword,
    KeywordDailyStat,
    KeywordMonthlyStat
)

from gsc_sync.models.traffic import (
    SearchConsoleTrafficAnalytics,
    TrafficDaily,
    TrafficMonthly
)

from gsc_sync.models.sync_state import (
    SyncCheckpoint,
    SyncRunLog
)

__all__ = [
    "Campaign",
    "GoogleAccount",
    "parse_keywords",
    "SearchConsoleKeyword",
    "KeywordDailyStat",
    "KeywordMonthlyStat",
    "SearchConsoleTrafficAnalytics",
    "TrafficDaily",
    "TrafficMonthly",
    "SyncCheckpoint",
    "SyncRunLog",
]
