"""
Idempotent writes for keyword and traffic records.

Every write is a single INSERT ... ON CONFLICT DO UPDATE on the record's
unique key, committed on its own. Only the fields passed in are written on
conflict; updated_at is always refreshed. Nothing is ever deleted.
"""
from contextlib import contextmanager
from functools import partial
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from gsc_sync.exceptions import PersistenceError
from gsc_sync.models.base import SessionLocal
from gsc_sync.models.keyword_stats import KeywordDailyStat, KeywordMonthlyStat, SearchConsoleKeyword
from gsc_sync.models.traffic import SearchConsoleTrafficAnalytics, TrafficDaily, TrafficMonthly
from gsc_sync.services.dimension_aggregator import AggregatedRecord, KeywordMetrics, rollup_daily_stats
from gsc_sync.utils.logger import log

KEYWORD_FIELDS = ("average_rank", "search_volume", "clicks", "top_ranking_page_url")
MONTHLY_FIELDS = KEYWORD_FIELDS + ("source", "calc_window_days")
TRAFFIC_FIELDS = ("clicks", "impressions", "ctr", "position")


@dataclass
class UpsertSummary:
    """Outcome of a batch of independent upserts"""
    upserted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "UpsertSummary") -> "UpsertSummary":
        self.upserted += other.upserted
        self.failed += other.failed
        self.errors.extend(other.errors)
        return self

    def to_dict(self) -> dict:
        return {
            "upserted": self.upserted,
            "failed": self.failed,
            "errors": self.errors[:10]
        }


def traffic_fields(record: AggregatedRecord) -> Dict[str, Any]:
    """Traffic columns from an aggregated record"""
    return {
        "clicks": record.clicks,
        "impressions": record.impressions,
        "ctr": record.ctr,
        "position": record.position,
    }


def dialect_insert(session, model):
    """INSERT construct of the session's dialect, which supports ON CONFLICT"""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise PersistenceError(f"Conditional upsert is not supported on {dialect}")


def _check_fields(fields: Mapping[str, Any], allowed: Tuple[str, ...], entity: str):
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown {entity} fields: {sorted(unknown)}")


class PersistenceMerger:
    """Conditional upserts for keyword, traffic and initial position records"""

    def __init__(self, session_factory: Callable = None):
        self.session_factory = session_factory or SessionLocal
        self._keyword_ids: Dict[Tuple[str, str], int] = {}
        self._analytics_ids: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, entity: str, key: tuple):
        """One session, one commit; SQLAlchemy failures become PersistenceError"""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            # Ids resolved in a rolled back transaction may not exist
            self._keyword_ids.clear()
            self._analytics_ids.clear()
            raise PersistenceError(f"Failed to upsert {entity} {key}: {e}", entity=entity, key=key) from e
        finally:
            session.close()

    def _upsert(self, session, model, key_values: Dict[str, Any], fields: Dict[str, Any]):
        now = datetime.utcnow()
        insert_stmt = dialect_insert(session, model).values(
            **key_values, **fields, created_at=now, updated_at=now
        )
        update = {name: insert_stmt.excluded[name] for name in fields}
        update["updated_at"] = now
        stmt = insert_stmt.on_conflict_do_update(index_elements=list(key_values), set_=update)
        session.execute(stmt)

    def _keyword_id(self, session, site_url: str, keyword: str) -> int:
        cache_key = (site_url, keyword)
        if cache_key in self._keyword_ids:
            return self._keyword_ids[cache_key]

        now = datetime.utcnow()
        stmt = dialect_insert(session, SearchConsoleKeyword).values(
            site_url=site_url, keyword=keyword, created_at=now, updated_at=now
        ).on_conflict_do_nothing(index_elements=["site_url", "keyword"])
        session.execute(stmt)
        keyword_id = session.execute(
            select(SearchConsoleKeyword.id).where(
                SearchConsoleKeyword.site_url == site_url,
                SearchConsoleKeyword.keyword == keyword
            )
        ).scalar_one()
        self._keyword_ids[cache_key] = keyword_id
        return keyword_id

    def _analytics_id(self, session, site_url: str) -> int:
        if site_url in self._analytics_ids:
            return self._analytics_ids[site_url]

        now = datetime.utcnow()
        stmt = dialect_insert(session, SearchConsoleTrafficAnalytics).values(
            site_url=site_url, created_at=now, updated_at=now
        ).on_conflict_do_nothing(index_elements=["site_url"])
        session.execute(stmt)
        analytics_id = session.execute(
            select(SearchConsoleTrafficAnalytics.id).where(
                SearchConsoleTrafficAnalytics.site_url == site_url
            )
        ).scalar_one()
        self._analytics_ids[site_url] = analytics_id
        return analytics_id

    # ------------------------------------------------------------------
    # Parent records
    # ------------------------------------------------------------------

    def ensure_keyword(self, site_url: str, keyword: str) -> int:
        """Id of the keyword record, creating it on first reference"""
        with self._transaction("keyword", (site_url, keyword)) as session:
            return self._keyword_id(session, site_url, keyword)

    def ensure_traffic_analytics(self, site_url: str) -> int:
        """Id of the site's traffic record, creating it on first reference"""
        with self._transaction("traffic_analytics", (site_url,)) as session:
            return self._analytics_id(session, site_url)

    # ------------------------------------------------------------------
    # Keyword records
    # ------------------------------------------------------------------

    def upsert_daily(self, site_url: str, keyword: str, day: date, **fields) -> None:
        """Insert or update the (keyword, date) daily stat with the supplied fields"""
        _check_fields(fields, KEYWORD_FIELDS, "daily stat")
        with self._transaction("keyword_daily_stat", (site_url, keyword, day)) as session:
            keyword_id = self._keyword_id(session, site_url, keyword)
            self._upsert(session, KeywordDailyStat, {"keyword_id": keyword_id, "date": day}, fields)

    def upsert_monthly(self, site_url: str, keyword: str, year: int, month: int, **fields) -> None:
        """Insert or update the (keyword, month, year) monthly stat with the supplied fields"""
        _check_fields(fields, MONTHLY_FIELDS, "monthly stat")
        with self._transaction("keyword_monthly_stat", (site_url, keyword, year, month)) as session:
            keyword_id = self._keyword_id(session, site_url, keyword)
            self._upsert(
                session,
                KeywordMonthlyStat,
                {"keyword_id": keyword_id, "year": year, "month": month},
                fields
            )

    def upsert_initial_position(self, site_url: str, keyword: str, position: float) -> None:
        """Replace the keyword's initial position with a freshly computed value"""
        with self._transaction("initial_position", (site_url, keyword)) as session:
            self._upsert(
                session,
                SearchConsoleKeyword,
                {"site_url": site_url, "keyword": keyword},
                {"initial_position": position, "initial_position_computed_at": datetime.utcnow()}
            )

    # ------------------------------------------------------------------
    # Traffic records
    # ------------------------------------------------------------------

    def upsert_traffic_daily(self, site_url: str, day: date, **fields) -> None:
        _check_fields(fields, TRAFFIC_FIELDS, "traffic")
        with self._transaction("traffic_daily", (site_url, day)) as session:
            analytics_id = self._analytics_id(session, site_url)
            self._upsert(session, TrafficDaily, {"analytics_id": analytics_id, "date": day}, fields)

    def upsert_traffic_monthly(self, site_url: str, year: int, month: int, **fields) -> None:
        _check_fields(fields, TRAFFIC_FIELDS, "traffic")
        with self._transaction("traffic_monthly", (site_url, year, month)) as session:
            analytics_id = self._analytics_id(session, site_url)
            self._upsert(
                session,
                TrafficMonthly,
                {"analytics_id": analytics_id, "year": year, "month": month},
                fields
            )

    # ------------------------------------------------------------------
    # Batches (each record commits independently)
    # ------------------------------------------------------------------

    def _batch(self, label: str, items: Iterable[Tuple[Any, Callable[[], None]]]) -> UpsertSummary:
        summary = UpsertSummary()
        for key, write in items:
            try:
                write()
                summary.upserted += 1
            except PersistenceError as e:
                summary.failed += 1
                summary.errors.append(str(e))
                log.error(f"{label} upsert failed for {key}: {e}")
        return summary

    def upsert_daily_batch(self, site_url: str, entries: Mapping[Tuple[date, str], KeywordMetrics]) -> UpsertSummary:
        """Upsert keyword-day metrics keyed by (date, keyword)"""
        return self._batch("Keyword daily", (
            ((day, keyword), partial(self.upsert_daily, site_url, keyword, day, **asdict(metrics)))
            for (day, keyword), metrics in entries.items()
        ))

    def upsert_traffic_daily_batch(self, site_url: str, records: Mapping[date, AggregatedRecord]) -> UpsertSummary:
        return self._batch("Traffic daily", (
            (day, partial(self.upsert_traffic_daily, site_url, day, **traffic_fields(record)))
            for day, record in records.items()
        ))

    def upsert_traffic_monthly_batch(
        self,
        site_url: str,
        records: Mapping[Tuple[int, int], AggregatedRecord]
    ) -> UpsertSummary:
        return self._batch("Traffic monthly", (
            ((year, month), partial(self.upsert_traffic_monthly, site_url, year, month, **traffic_fields(record)))
            for (year, month), record in records.items()
        ))

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------

    def rollup_month_from_daily(self, site_url: str, keyword: str, year: int, month: int) -> Optional[AggregatedRecord]:
        """
        Recompute a keyword's monthly stat from its persisted daily stats.

        Returns the rolled up record, or None when the month has no daily stats.
        """
        first_day = date(year, month, 1)
        next_month = first_day + relativedelta(months=1)

        session = self.session_factory()
        try:
            daily_stats = session.execute(
                select(KeywordDailyStat)
                .join(SearchConsoleKeyword, KeywordDailyStat.keyword_id == SearchConsoleKeyword.id)
                .where(
                    SearchConsoleKeyword.site_url == site_url,
                    SearchConsoleKeyword.keyword == keyword,
                    KeywordDailyStat.date >= first_day,
                    KeywordDailyStat.date < next_month
                )
                .order_by(KeywordDailyStat.date)
            ).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to read daily stats for {keyword} {year}-{month:02d}: {e}",
                entity="keyword_daily_stat",
                key=(site_url, keyword, year, month)
            ) from e
        finally:
            session.close()

        if not daily_stats:
            return None

        record = rollup_daily_stats(daily_stats, key=(year, month, keyword))
        self.upsert_monthly(
            site_url, keyword, year, month,
            average_rank=record.position,
            search_volume=record.impressions,
            clicks=record.clicks,
            top_ranking_page_url=record.best_page,
            source="daily_rollup",
            calc_window_days=record.row_count,
        )
        return record


