"""
Completeness checks that gate Search Console fetches.

A scope is complete when the persisted records already cover it, so the
orchestrator can skip the (rate limited) fetch. Checks always run before a
fetch, never after.

Backfill windows that verify complete are recorded as SyncCheckpoint rows
together with a digest of the keyword set they were verified against; later
checks trust the checkpoint while the keyword set is unchanged.
"""
import hashlib
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from gsc_sync.exceptions import PersistenceError
from gsc_sync.models.base import SessionLocal
from gsc_sync.models.keyword_stats import KeywordDailyStat, SearchConsoleKeyword
from gsc_sync.models.sync_state import SyncCheckpoint
from gsc_sync.models.traffic import SearchConsoleTrafficAnalytics, TrafficDaily
from gsc_sync.services.date_windows import DateWindow
from gsc_sync.services.persistence_merger import dialect_insert
from gsc_sync.utils.logger import log

FLOW_DAILY = "daily_incremental"
FLOW_BACKFILL = "historical_backfill"
FLOW_INITIAL_POSITION = "initial_position"
FLOW_TRAFFIC = "traffic"


@dataclass(frozen=True)
class MonthScope:
    site_url: str
    keywords: Tuple[str, ...]
    window: DateWindow
    campaign_id: Optional[int] = None


@dataclass(frozen=True)
class InitialPositionScope:
    site_url: str
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class SiteDayScope:
    site_url: str
    day: date


@dataclass(frozen=True)
class DailyTargetScope:
    site_url: str
    keywords: Tuple[str, ...]
    day: date


Scope = Union[MonthScope, InitialPositionScope, SiteDayScope, DailyTargetScope]


def keywords_digest(keywords: Iterable[str]) -> str:
    """Stable digest of a keyword set (order and duplicates ignored)"""
    joined = "\n".join(sorted(set(keywords)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _unique(keywords: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(keywords))


class CompletenessChecker:
    """Decides whether a scope needs fetching"""

    def __init__(self, session_factory: Callable = None):
        self.session_factory = session_factory or SessionLocal

    def is_complete(self, scope: Scope) -> bool:
        if isinstance(scope, MonthScope):
            return self.is_month_complete(scope.site_url, scope.keywords, scope.window, scope.campaign_id)
        if isinstance(scope, InitialPositionScope):
            return self.is_initial_position_complete(scope.site_url, scope.keywords)
        if isinstance(scope, SiteDayScope):
            return self.is_site_day_complete(scope.site_url, scope.day)
        if isinstance(scope, DailyTargetScope):
            return self.is_daily_target_complete(scope.site_url, scope.keywords, scope.day)
        raise TypeError(f"Unknown completeness scope: {scope!r}")

    # ------------------------------------------------------------------
    # Monthly (backfill window) scope
    # ------------------------------------------------------------------

    def is_month_complete(
        self,
        site_url: str,
        keywords: Sequence[str],
        window: DateWindow,
        campaign_id: Optional[int] = None
    ) -> bool:
        """
        Every keyword has a usable daily record for every day of the window.

        A record is usable when it has an average rank or a top page URL. The
        window is a full calendar month except at the campaign start and the
        lag boundary, where it is clipped.
        """
        keywords = _unique(keywords)
        if not keywords:
            return True
        digest = keywords_digest(keywords)

        session = self.session_factory()
        try:
            if campaign_id is not None and self._has_checkpoint(session, campaign_id, FLOW_BACKFILL, window.label, digest):
                return True

            complete = self._keyword_days_complete(session, site_url, keywords, window)

            if complete and campaign_id is not None:
                self._write_checkpoint(session, campaign_id, FLOW_BACKFILL, window.label, digest)
                session.commit()
                log.debug(f"Checkpointed {FLOW_BACKFILL} {window.label} for campaign {campaign_id}")
            return complete
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Completeness check failed for {site_url} {window.label}: {e}") from e
        finally:
            session.close()

    def _keyword_days_complete(self, session, site_url: str, keywords: List[str], window: DateWindow) -> bool:
        expected = len(keywords) * window.num_days
        usable = session.execute(
            select(func.count(KeywordDailyStat.id))
            .join(SearchConsoleKeyword, KeywordDailyStat.keyword_id == SearchConsoleKeyword.id)
            .where(
                SearchConsoleKeyword.site_url == site_url,
                SearchConsoleKeyword.keyword.in_(keywords),
                KeywordDailyStat.date >= window.start,
                KeywordDailyStat.date < window.end,
                or_(
                    KeywordDailyStat.average_rank.isnot(None),
                    and_(
                        KeywordDailyStat.top_ranking_page_url.isnot(None),
                        KeywordDailyStat.top_ranking_page_url != ""
                    )
                )
            )
        ).scalar_one()
        return usable >= expected

    # ------------------------------------------------------------------
    # Initial position scope
    # ------------------------------------------------------------------

    def is_initial_position_complete(self, site_url: str, keywords: Sequence[str]) -> bool:
        """Every keyword already has an initial position"""
        keywords = _unique(keywords)
        if not keywords:
            return True

        session = self.session_factory()
        try:
            recorded = session.execute(
                select(func.count(SearchConsoleKeyword.id)).where(
                    SearchConsoleKeyword.site_url == site_url,
                    SearchConsoleKeyword.keyword.in_(keywords),
                    SearchConsoleKeyword.initial_position.isnot(None)
                )
            ).scalar_one()
            return recorded >= len(keywords)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Initial position check failed for {site_url}: {e}") from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Site daily scope
    # ------------------------------------------------------------------

    def is_site_day_complete(self, site_url: str, day: date) -> bool:
        """A site traffic record exists for the date"""
        session = self.session_factory()
        try:
            found = session.execute(
                select(TrafficDaily.id)
                .join(SearchConsoleTrafficAnalytics, TrafficDaily.analytics_id == SearchConsoleTrafficAnalytics.id)
                .where(
                    SearchConsoleTrafficAnalytics.site_url == site_url,
                    TrafficDaily.date == day
                )
                .limit(1)
            ).first()
            return found is not None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Site traffic check failed for {site_url} {day}: {e}") from e
        finally:
            session.close()

    def is_daily_target_complete(self, site_url: str, keywords: Sequence[str], day: date) -> bool:
        """Keyword records and site traffic both exist for the target date"""
        keywords = _unique(keywords)
        window = DateWindow(day, day + timedelta(days=1))
        if not self.is_site_day_complete(site_url, day):
            return False
        if not keywords:
            return True

        session = self.session_factory()
        try:
            return self._keyword_days_complete(session, site_url, keywords, window)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Daily completeness check failed for {site_url} {day}: {e}") from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def _has_checkpoint(self, session, campaign_id: int, flow: str, scope: str, digest: str) -> bool:
        found = session.execute(
            select(SyncCheckpoint.id).where(
                SyncCheckpoint.campaign_id == campaign_id,
                SyncCheckpoint.flow == flow,
                SyncCheckpoint.scope == scope,
                SyncCheckpoint.keywords_digest == digest,
                SyncCheckpoint.status == "complete"
            ).limit(1)
        ).first()
        return found is not None

    def _write_checkpoint(self, session, campaign_id: int, flow: str, scope: str, digest: Optional[str]):
        now = datetime.utcnow()
        insert_stmt = dialect_insert(session, SyncCheckpoint).values(
            campaign_id=campaign_id,
            flow=flow,
            scope=scope,
            keywords_digest=digest,
            status="complete",
            completed_at=now,
            created_at=now,
            updated_at=now,
        )
        session.execute(insert_stmt.on_conflict_do_update(
            index_elements=["campaign_id", "flow", "scope"],
            set_={
                "keywords_digest": insert_stmt.excluded.keywords_digest,
                "status": insert_stmt.excluded.status,
                "completed_at": now,
                "updated_at": now,
            }
        ))

    def mark_complete(self, campaign_id: int, flow: str, scope: str, keywords: Optional[Iterable[str]] = None):
        """Record a scope as complete for a campaign flow"""
        digest = keywords_digest(keywords) if keywords is not None else None
        session = self.session_factory()
        try:
            self._write_checkpoint(session, campaign_id, flow, scope, digest)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to write checkpoint {flow} {scope}: {e}") from e
        finally:
            session.close()

    def checkpoints(self, campaign_id: int) -> List[SyncCheckpoint]:
        session = self.session_factory()
        try:
            return session.execute(
                select(SyncCheckpoint)
                .where(SyncCheckpoint.campaign_id == campaign_id)
                .order_by(SyncCheckpoint.flow, SyncCheckpoint.scope)
            ).scalars().all()
        finally:
            session.close()
