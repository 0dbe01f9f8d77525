"""
Tests for the JSON export written after a campaign sync.

Guards against:
  - Other sites' keywords leaking into a campaign export
  - Export failures failing the sync itself
"""
import json
from datetime import date

from gsc_sync.services.completeness_checker import FLOW_TRAFFIC
from gsc_sync.services.campaign_sync_service import CampaignSyncService
from gsc_sync.services.dimension_aggregator import AggregatedRecord
from gsc_sync.services.export_service import ExportService
from gsc_sync.services.persistence_merger import PersistenceMerger

from conftest import FakeSearchConsole, run

SITE = "https://example.com/"


def test_payload_contains_only_campaign_keywords(session_factory, tmp_path):
    merger = PersistenceMerger(session_factory)
    merger.upsert_daily(SITE, "seo audit", date(2025, 7, 1), average_rank=4.0, search_volume=10, clicks=1)
    merger.upsert_daily(SITE, "untracked", date(2025, 7, 1), average_rank=1.0, search_volume=5, clicks=0)
    merger.upsert_daily("sc-domain:other.com", "seo audit", date(2025, 7, 1), average_rank=9.0)
    merger.upsert_initial_position(SITE, "seo audit", 12.5)
    merger.upsert_traffic_monthly_batch(SITE, {(2025, 6): AggregatedRecord(key=None, clicks=3, impressions=30)})

    exporter = ExportService(export_dir=str(tmp_path), session_factory=session_factory)
    path = exporter.export_campaign(1, SITE, ["seo audit"])

    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    assert path.startswith(str(tmp_path))
    assert "example_com" in path
    assert payload["campaign_id"] == 1
    assert [kw["keyword"] for kw in payload["keywords"]] == ["seo audit"]
    keyword = payload["keywords"][0]
    assert keyword["initial_position"] == 12.5
    assert keyword["daily"] == [{
        "date": "2025-07-01", "average_rank": 4.0, "search_volume": 10, "clicks": 1, "top_ranking_page_url": None,
    }]
    assert payload["traffic"]["monthly"][0]["clicks"] == 3
    assert payload["traffic"]["daily"] == []


def test_export_failure_does_not_fail_the_sync(session_factory, make_campaign):
    class BrokenExporter:
        def export_campaign(self, campaign_id, site_url, keywords):
            raise OSError("read-only file system")

    campaign_id = make_campaign()
    service = CampaignSyncService(
        session_factory=session_factory,
        connector_factory=lambda campaign: FakeSearchConsole(),
        exporter=BrokenExporter(),
        today_fn=lambda: date(2025, 6, 20),
        lag_days=3,
    )
    report = run(service.run_campaign(campaign_id, flows=[FLOW_TRAFFIC]))
    assert report.success
