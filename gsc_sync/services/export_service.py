"""
JSON export of a campaign's synced Search Console data
"""
import json
import os
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import select

from gsc_sync.config import get_settings
from gsc_sync.models.base import SessionLocal
from gsc_sync.models.keyword_stats import KeywordDailyStat, KeywordMonthlyStat, SearchConsoleKeyword
from gsc_sync.models.traffic import SearchConsoleTrafficAnalytics, TrafficDaily, TrafficMonthly
from gsc_sync.utils.logger import log
from gsc_sync.utils.url_parsing import site_slug

settings = get_settings()


class ExportService:
    """Writes exports/<site>_<timestamp>.json snapshots after a sync"""

    def __init__(self, export_dir: Optional[str] = None, session_factory: Callable = None):
        self.export_dir = export_dir or settings.export_dir
        self.session_factory = session_factory or SessionLocal

    def build_payload(self, site_url: str, keywords: List[str]) -> Dict:
        """Keyword and traffic records for a site as plain JSON-able dicts"""
        session = self.session_factory()
        try:
            keyword_rows = session.execute(
                select(SearchConsoleKeyword).where(
                    SearchConsoleKeyword.site_url == site_url,
                    SearchConsoleKeyword.keyword.in_(keywords)
                ).order_by(SearchConsoleKeyword.keyword)
            ).scalars().all()

            keyword_data = []
            for kw in keyword_rows:
                daily = session.execute(
                    select(KeywordDailyStat)
                    .where(KeywordDailyStat.keyword_id == kw.id)
                    .order_by(KeywordDailyStat.date)
                ).scalars().all()
                monthly = session.execute(
                    select(KeywordMonthlyStat)
                    .where(KeywordMonthlyStat.keyword_id == kw.id)
                    .order_by(KeywordMonthlyStat.year, KeywordMonthlyStat.month)
                ).scalars().all()
                keyword_data.append({
                    "keyword": kw.keyword,
                    "initial_position": kw.initial_position,
                    "daily": [
                        {
                            "date": stat.date.isoformat(),
                            "average_rank": stat.average_rank,
                            "search_volume": stat.search_volume,
                            "clicks": stat.clicks,
                            "top_ranking_page_url": stat.top_ranking_page_url,
                        }
                        for stat in daily
                    ],
                    "monthly": [
                        {
                            "year": stat.year,
                            "month": stat.month,
                            "average_rank": stat.average_rank,
                            "search_volume": stat.search_volume,
                            "clicks": stat.clicks,
                            "top_ranking_page_url": stat.top_ranking_page_url,
                            "calc_window_days": stat.calc_window_days,
                        }
                        for stat in monthly
                    ],
                })

            traffic = {"daily": [], "monthly": []}
            analytics = session.execute(
                select(SearchConsoleTrafficAnalytics).where(SearchConsoleTrafficAnalytics.site_url == site_url)
            ).scalar_one_or_none()
            if analytics is not None:
                traffic["daily"] = [
                    {"date": row.date.isoformat(), "clicks": row.clicks, "impressions": row.impressions,
                     "ctr": row.ctr, "position": row.position}
                    for row in session.execute(
                        select(TrafficDaily).where(TrafficDaily.analytics_id == analytics.id).order_by(TrafficDaily.date)
                    ).scalars()
                ]
                traffic["monthly"] = [
                    {"year": row.year, "month": row.month, "clicks": row.clicks, "impressions": row.impressions,
                     "ctr": row.ctr, "position": row.position}
                    for row in session.execute(
                        select(TrafficMonthly)
                        .where(TrafficMonthly.analytics_id == analytics.id)
                        .order_by(TrafficMonthly.year, TrafficMonthly.month)
                    ).scalars()
                ]
        finally:
            session.close()

        return {
            "site_url": site_url,
            "exported_at": datetime.utcnow().isoformat(),
            "keywords": keyword_data,
            "traffic": traffic,
        }

    def export_campaign(self, campaign_id: int, site_url: str, keywords: List[str]) -> str:
        """Write the campaign's data to a timestamped JSON file and return its path"""
        payload = self.build_payload(site_url, keywords)
        payload["campaign_id"] = campaign_id

        os.makedirs(self.export_dir, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S")
        path = os.path.join(self.export_dir, f"{site_slug(site_url)}_{timestamp}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

        log.info(f"Exported campaign {campaign_id} data to {path}")
        return path
