"""
Campaign Sync Service
Sequences the Search Console sync flows for each campaign and persists results
"""
import asyncio
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from gsc_sync.config import get_settings
from gsc_sync.connectors.search_console_connector import SearchConsoleConnector
from gsc_sync.exceptions import ConfigurationError, ExternalFetchError, PersistenceError
from gsc_sync.models.base import SessionLocal
from gsc_sync.models.campaign import Campaign
from gsc_sync.models.sync_state import SyncRunLog
from gsc_sync.services.completeness_checker import (
    CompletenessChecker,
    FLOW_BACKFILL,
    FLOW_DAILY,
    FLOW_INITIAL_POSITION,
    FLOW_TRAFFIC,
)
from gsc_sync.services.date_windows import (
    DateWindow,
    daily_target_window,
    initial_position_window,
    monthly_backfill_windows,
    reporting_today,
    traffic_windows,
)
from gsc_sync.services.dimension_aggregator import (
    KeywordMetrics,
    SearchAnalyticsRow,
    aggregate,
    combine_keyword_streams,
    dimension_key,
    keyword_lookup,
    month_dimension_key,
    page_dimension,
    restrict_key,
)
from gsc_sync.services.persistence_merger import PersistenceMerger, UpsertSummary
from gsc_sync.utils.logger import log

settings = get_settings()

# Flows run in this order for every campaign
FLOWS = (FLOW_DAILY, FLOW_BACKFILL, FLOW_INITIAL_POSITION, FLOW_TRAFFIC)

KEYWORD_DIMENSIONS = ["date", "query"]
KEYWORD_PAGE_DIMENSIONS = ["date", "query", "page"]
SITE_DIMENSIONS = ["date"]


@dataclass
class CampaignContext:
    """Everything a flow needs about one campaign"""
    campaign_id: int
    name: str
    site_url: str
    keywords: List[str]
    start_date: Optional[date]
    connector: Any


@dataclass
class FlowResult:
    """Tracks one flow execution for logging"""
    flow: str
    campaign_id: int
    status: str = "success"  # success, partial, failed, skipped, cancelled
    windows_processed: int = 0
    windows_skipped: int = 0
    windows_failed: int = 0
    records_upserted: int = 0
    records_failed: int = 0
    errors: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status in ("success", "skipped")

    def add_summary(self, summary: UpsertSummary):
        self.records_upserted += summary.upserted
        self.records_failed += summary.failed
        self.errors.extend(summary.errors)

    def fail_window(self, label: str, error: Exception):
        self.windows_failed += 1
        self.errors.append(f"{label}: {error}")
        log.error(f"Campaign {self.campaign_id} {self.flow} window {label} failed: {error}")

    def to_dict(self) -> dict:
        return {
            "flow": self.flow,
            "status": self.status,
            "windows_processed": self.windows_processed,
            "windows_skipped": self.windows_skipped,
            "windows_failed": self.windows_failed,
            "records_upserted": self.records_upserted,
            "records_failed": self.records_failed,
            "error_message": self.error_message,
            "errors": self.errors[:10],
            "duration_seconds": round(self.duration_seconds, 2),
        }


@dataclass
class CampaignSyncReport:
    """Outcome of all flows for one campaign"""
    campaign_id: int
    success: bool = False
    flows: List[FlowResult] = field(default_factory=list)
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "campaign_id": self.campaign_id,
            "success": self.success,
            "error_message": self.error_message,
            "flows": [flow.to_dict() for flow in self.flows],
        }


def _persist_run_log(result: FlowResult, session_factory: Callable = None) -> Optional[int]:
    """
    Persist a flow result to sync_run_logs.
    Returns the log ID or None if failed.
    """
    db = (session_factory or SessionLocal)()
    try:
        run_log = SyncRunLog(
            campaign_id=result.campaign_id,
            flow=result.flow,
            status=result.status,
            windows_processed=result.windows_processed,
            windows_skipped=result.windows_skipped,
            windows_failed=result.windows_failed,
            records_upserted=result.records_upserted,
            records_failed=result.records_failed,
            error_message=result.error_message,
            error_details={"errors": result.errors[:20]} if result.errors else None,
            started_at=result.started_at,
            completed_at=result.completed_at,
            duration_seconds=result.duration_seconds,
        )
        db.add(run_log)
        db.commit()
        return run_log.id
    except Exception as e:
        db.rollback()
        log.error(f"Failed to persist run log for campaign {result.campaign_id} {result.flow}: {e}")
        return None
    finally:
        db.close()


@contextmanager
def track_flow(campaign_id: int, flow: str, session_factory: Callable = None):
    """
    Context manager timing a flow and containing its failures.

    Usage:
        with track_flow(campaign_id, "traffic") as result:
            # do flow work
            result.records_upserted += 12

    Errors other than ConfigurationError and cancellation are logged and
    recorded as a failed flow instead of propagating.
    """
    result = FlowResult(flow=flow, campaign_id=campaign_id)
    result.started_at = datetime.utcnow()
    start_time = time.time()

    try:
        yield result
    except ConfigurationError as e:
        result.status = "failed"
        result.error_message = str(e)
        raise
    except asyncio.CancelledError:
        result.status = "cancelled"
        raise
    except Exception as e:
        result.status = "failed"
        result.error_message = str(e)
        log.error(f"Campaign {campaign_id} {flow} failed: {type(e).__name__}: {e}")
    finally:
        result.completed_at = datetime.utcnow()
        result.duration_seconds = time.time() - start_time

        if result.status in ("success", "partial"):
            has_failures = result.windows_failed > 0 or result.records_failed > 0
            has_progress = result.windows_processed > 0 or result.records_upserted > 0
            if has_failures:
                result.status = "partial" if has_progress else "failed"

        _persist_run_log(result, session_factory)


def connector_for_campaign(campaign: Campaign) -> SearchConsoleConnector:
    """Search Console connector authorised for the campaign's linked account"""
    if campaign.google_account is not None:
        return SearchConsoleConnector.from_account(campaign.google_account)
    if settings.gsc_credentials_path:
        return SearchConsoleConnector.from_service_account(settings.gsc_credentials_path)
    raise ConfigurationError(f"Campaign {campaign.id} has no linked Google account", campaign_id=campaign.id)


class CampaignSyncService:
    """Runs daily, backfill, initial position and traffic flows per campaign"""

    def __init__(
        self,
        session_factory: Callable = None,
        connector_factory: Callable[[Campaign], Any] = None,
        merger: Optional[PersistenceMerger] = None,
        checker: Optional[CompletenessChecker] = None,
        exporter: Any = None,
        today_fn: Callable[[], date] = None,
        lag_days: Optional[int] = None,
        wait_for_all_data: Optional[bool] = None,
        window_delay: Optional[float] = None
    ):
        self.session_factory = session_factory or SessionLocal
        self.connector_factory = connector_factory or connector_for_campaign
        self.merger = merger or PersistenceMerger(self.session_factory)
        self.checker = checker or CompletenessChecker(self.session_factory)
        self.exporter = exporter
        self.today_fn = today_fn or reporting_today
        self.lag_days = lag_days if lag_days is not None else settings.gsc_reporting_lag_days
        self.wait_for_all_data = (
            wait_for_all_data if wait_for_all_data is not None else settings.gsc_wait_for_all_data
        )
        self.window_delay = window_delay if window_delay is not None else settings.gsc_page_delay_seconds

        self._flow_handlers = {
            FLOW_DAILY: self.daily_incremental_sync,
            FLOW_BACKFILL: self.historical_backfill,
            FLOW_INITIAL_POSITION: self.initial_position_backfill,
            FLOW_TRAFFIC: self.traffic_sync,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def sync_campaign(
        self,
        campaign_id: int,
        flows: Optional[Sequence[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> bool:
        """Run a campaign's flows; True only when every flow succeeded"""
        try:
            report = await self.run_campaign(campaign_id, flows=flows, cancel_event=cancel_event)
        except Exception as e:
            log.error(f"Campaign {campaign_id} sync crashed: {type(e).__name__}: {e}")
            return False
        return report.success

    async def run_campaign(
        self,
        campaign_id: int,
        flows: Optional[Sequence[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> CampaignSyncReport:
        """
        Run the selected flows (all by default) for one campaign, in order.

        A failing flow never stops the flows after it. A ConfigurationError
        stops the campaign. Nothing raised by a flow escapes this method.
        """
        report = CampaignSyncReport(campaign_id=campaign_id)
        selected = list(flows) if flows else list(FLOWS)
        unknown = [flow for flow in selected if flow not in FLOWS]
        if unknown:
            report.error_message = f"Unknown flows: {unknown}"
            log.error(f"Campaign {campaign_id}: {report.error_message}")
            return report

        try:
            ctx = self.load_campaign(campaign_id)
        except ConfigurationError as e:
            report.error_message = str(e)
            log.error(f"Campaign {campaign_id} not synced: {e}")
            return report
        except Exception as e:
            report.error_message = str(e)
            log.error(f"Campaign {campaign_id} could not be loaded: {type(e).__name__}: {e}")
            return report

        log.info(
            f"Syncing campaign {ctx.campaign_id} '{ctx.name}' ({ctx.site_url}, "
            f"{len(ctx.keywords)} keywords, flows={selected})"
        )

        cancelled = False
        try:
            for flow in FLOWS:
                if flow not in selected:
                    continue
                if cancel_event is not None and cancel_event.is_set():
                    log.warning(f"Campaign {campaign_id} sync cancelled before {flow}")
                    cancelled = True
                    break
                with track_flow(campaign_id, flow, self.session_factory) as result:
                    report.flows.append(result)
                    await self._flow_handlers[flow](ctx, result, cancel_event=cancel_event)
                if result.status == "cancelled":
                    cancelled = True
                    break
        except ConfigurationError as e:
            report.error_message = str(e)
            log.error(f"Campaign {campaign_id} sync aborted: {e}")
            return report

        report.success = not cancelled and all(flow.success for flow in report.flows)

        if self.exporter is not None:
            try:
                self.exporter.export_campaign(ctx.campaign_id, ctx.site_url, ctx.keywords)
            except Exception as e:
                log.error(f"Export failed for campaign {campaign_id}: {e}")

        summary = ", ".join(f"{flow.flow}={flow.status}" for flow in report.flows)
        log.info(f"Campaign {campaign_id} sync {'succeeded' if report.success else 'failed'}: {summary}")
        return report

    async def sync_all_campaigns(self, max_concurrency: Optional[int] = None) -> Dict[str, Any]:
        """
        Sync every active campaign concurrently.

        Each campaign is isolated: a failure (or crash) in one never affects
        the others. Returns a summary dict.
        """
        max_concurrency = max_concurrency or settings.sync_max_concurrent_campaigns
        start = time.time()

        session = self.session_factory()
        try:
            campaign_ids = session.execute(
                select(Campaign.id).where(Campaign.is_active.is_(True)).order_by(Campaign.id)
            ).scalars().all()
        except SQLAlchemyError as e:
            log.error(f"Could not list active campaigns: {e}")
            return {
                "success": False,
                "total_campaigns": 0,
                "succeeded": 0,
                "failed": 0,
                "duration_seconds": round(time.time() - start, 2),
                "campaigns": {},
                "error_message": str(e),
            }
        finally:
            session.close()

        log.info(f"Starting sync for {len(campaign_ids)} active campaigns (max {max_concurrency} concurrent)")
        semaphore = asyncio.Semaphore(max_concurrency)

        async def run_one(campaign_id: int) -> CampaignSyncReport:
            async with semaphore:
                return await self.run_campaign(campaign_id)

        outcomes = await asyncio.gather(*(run_one(cid) for cid in campaign_ids), return_exceptions=True)

        campaigns = {}
        succeeded = 0
        for campaign_id, outcome in zip(campaign_ids, outcomes):
            if isinstance(outcome, BaseException):
                log.error(f"Campaign {campaign_id} sync crashed: {type(outcome).__name__}: {outcome}")
                campaigns[campaign_id] = {"success": False, "error_message": str(outcome)}
                continue
            campaigns[campaign_id] = outcome.to_dict()
            if outcome.success:
                succeeded += 1

        failed = len(campaign_ids) - succeeded
        duration = round(time.time() - start, 2)
        log.info(f"Campaign sync summary: {succeeded} succeeded, {failed} failed in {duration}s")

        return {
            "success": failed == 0,
            "total_campaigns": len(campaign_ids),
            "succeeded": succeeded,
            "failed": failed,
            "duration_seconds": duration,
            "campaigns": campaigns,
        }

    def load_campaign(self, campaign_id: int) -> CampaignContext:
        """
        Load a campaign and build its connector.

        Raises:
            ConfigurationError: unknown campaign, no start date, no site or no linked account
        """
        session = self.session_factory()
        try:
            campaign = session.get(Campaign, campaign_id)
            if campaign is None:
                raise ConfigurationError(f"Campaign {campaign_id} not found", campaign_id=campaign_id)
            if campaign.start_date is None:
                raise ConfigurationError(f"Campaign {campaign_id} has no start date", campaign_id=campaign_id)
            if not campaign.site_url:
                raise ConfigurationError(f"Campaign {campaign_id} has no site URL", campaign_id=campaign_id)

            connector = self.connector_factory(campaign)

            return CampaignContext(
                campaign_id=campaign.id,
                name=campaign.name,
                site_url=campaign.site_url,
                keywords=campaign.keyword_list,
                start_date=campaign.start_date,
                connector=connector,
            )
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def daily_incremental_sync(self, ctx: CampaignContext, result: FlowResult, cancel_event=None):
        """Fetch, aggregate and upsert the daily target date for keywords and the site"""
        window = daily_target_window(today=self.today_fn(), lag_days=self.lag_days)
        day = window.start

        if self.checker.is_daily_target_complete(ctx.site_url, ctx.keywords, day):
            result.windows_skipped += 1
            log.info(f"Campaign {ctx.campaign_id}: {day} already synced, skipping daily fetch")
            return

        if ctx.keywords:
            try:
                keyword_rows = await self._fetch(ctx, window, KEYWORD_DIMENSIONS)
                page_rows = await self._fetch(ctx, window, KEYWORD_PAGE_DIMENSIONS)
            except ExternalFetchError as e:
                result.fail_window(f"keywords {window.label}", e)
            else:
                entries = self._keyword_days(ctx, window, keyword_rows, page_rows)
                result.add_summary(self.merger.upsert_daily_batch(ctx.site_url, entries))
                self._rollup_months(ctx, [window], result)
                result.windows_processed += 1

        try:
            site_rows = await self._fetch(ctx, window, SITE_DIMENSIONS)
        except ExternalFetchError as e:
            result.fail_window(f"site {window.label}", e)
        else:
            records = aggregate(site_rows, dimension_key(SITE_DIMENSIONS, "date"), zero_fill=window.days())
            result.add_summary(self.merger.upsert_traffic_daily_batch(ctx.site_url, records))
            result.windows_processed += 1

        log.info(
            f"Campaign {ctx.campaign_id} daily sync {day}: "
            f"{result.records_upserted} records, {result.windows_failed} failed streams"
        )

    async def historical_backfill(self, ctx: CampaignContext, result: FlowResult, cancel_event=None):
        """
        Backfill keyword-day records month by month from the campaign start.

        Months already complete are skipped without fetching, so an
        interrupted backfill resumes at the first incomplete month.
        """
        if not ctx.keywords:
            result.status = "skipped"
            log.info(f"Campaign {ctx.campaign_id} has no keywords, skipping backfill")
            return

        windows = monthly_backfill_windows(ctx.start_date, lag_days=self.lag_days, today=self.today_fn())
        if not windows:
            result.status = "skipped"
            log.info(f"Campaign {ctx.campaign_id} starts after the reporting boundary, nothing to backfill")
            return

        log.info(f"Campaign {ctx.campaign_id} backfill: {len(windows)} months from {windows[0].start}")

        for index, window in enumerate(windows, start=1):
            if cancel_event is not None and cancel_event.is_set():
                result.status = "cancelled"
                log.warning(
                    f"Campaign {ctx.campaign_id} backfill cancelled before {window.label} "
                    f"({index - 1}/{len(windows)} months done)"
                )
                return

            if self.checker.is_month_complete(ctx.site_url, ctx.keywords, window, campaign_id=ctx.campaign_id):
                result.windows_skipped += 1
                log.debug(f"Campaign {ctx.campaign_id} {window.label} complete, skipping")
                continue

            try:
                keyword_rows = await self._fetch(ctx, window, KEYWORD_DIMENSIONS)
                page_rows = await self._fetch(ctx, window, KEYWORD_PAGE_DIMENSIONS)
            except ExternalFetchError as e:
                result.fail_window(window.label, e)
                continue

            entries = self._keyword_days(ctx, window, keyword_rows, page_rows)
            summary = self.merger.upsert_daily_batch(ctx.site_url, entries)
            result.add_summary(summary)
            self._rollup_months(ctx, [window], result)
            result.windows_processed += 1

            log.info(
                f"Campaign {ctx.campaign_id} backfilled {window.label} ({index}/{len(windows)}): "
                f"{summary.upserted} keyword-days, {summary.failed} failed"
            )

            if index < len(windows) and self.window_delay > 0:
                await asyncio.sleep(self.window_delay)

    async def initial_position_backfill(self, ctx: CampaignContext, result: FlowResult, cancel_event=None):
        """
        Compute each keyword's initial position from the days before the campaign.

        The position is aggregated across the whole window, never per day, and
        replaces any previous value. The daily rows of the window are stored
        too, for audit.
        """
        if not ctx.keywords:
            result.status = "skipped"
            return

        if self.checker.is_initial_position_complete(ctx.site_url, ctx.keywords):
            result.windows_skipped += 1
            log.info(f"Campaign {ctx.campaign_id} initial positions already recorded")
            return

        window = initial_position_window(ctx.start_date, lag_days=self.lag_days, today=self.today_fn())
        if window is None:
            result.status = "skipped"
            log.info(f"Campaign {ctx.campaign_id} initial position window not reportable yet")
            return

        try:
            keyword_rows = await self._fetch(ctx, window, KEYWORD_DIMENSIONS)
            page_rows = await self._fetch(ctx, window, KEYWORD_PAGE_DIMENSIONS)
        except ExternalFetchError as e:
            result.fail_window(window.label, e)
            return

        query_map = keyword_lookup(ctx.keywords)
        keyword_totals = aggregate(
            keyword_rows,
            dimension_key(KEYWORD_DIMENSIONS, "query", query_map=query_map),
            zero_fill=ctx.keywords,
        )
        page_totals = aggregate(
            page_rows,
            dimension_key(KEYWORD_PAGE_DIMENSIONS, "query", query_map=query_map),
            page_key=page_dimension(KEYWORD_PAGE_DIMENSIONS),
        )
        positions = combine_keyword_streams(keyword_totals, page_totals, ctx.keywords)

        for keyword in ctx.keywords:
            try:
                self.merger.upsert_initial_position(ctx.site_url, keyword, positions[keyword].average_rank)
                result.records_upserted += 1
            except PersistenceError as e:
                result.records_failed += 1
                result.errors.append(str(e))
                log.error(f"Initial position upsert failed for '{keyword}': {e}")

        entries = self._keyword_days(ctx, window, keyword_rows, page_rows)
        result.add_summary(self.merger.upsert_daily_batch(ctx.site_url, entries))
        result.windows_processed += 1

        if result.records_failed == 0:
            self.checker.mark_complete(ctx.campaign_id, FLOW_INITIAL_POSITION, window.label, ctx.keywords)

        log.info(f"Campaign {ctx.campaign_id} initial positions computed from {window.label}")

    async def traffic_sync(self, ctx: CampaignContext, result: FlowResult, cancel_event=None):
        """Site traffic for the last fully elapsed months plus the running month, daily"""
        windows = traffic_windows(today=self.today_fn(), lag_days=self.lag_days)

        span = windows.monthly_span
        if span is not None:
            try:
                rows = await self._fetch(ctx, span, SITE_DIMENSIONS)
            except ExternalFetchError as e:
                result.fail_window(f"monthly {span.label}", e)
            else:
                month_keys = [(w.start.year, w.start.month) for w in windows.monthly]
                records = aggregate(
                    rows,
                    restrict_key(month_dimension_key(SITE_DIMENSIONS), month_keys),
                    zero_fill=month_keys,
                )
                result.add_summary(self.merger.upsert_traffic_monthly_batch(ctx.site_url, records))
                result.windows_processed += 1

        current = windows.current_month
        if current is not None:
            try:
                rows = await self._fetch(ctx, current, SITE_DIMENSIONS)
            except ExternalFetchError as e:
                result.fail_window(f"daily {current.label}", e)
            else:
                records = aggregate(rows, dimension_key(SITE_DIMENSIONS, "date"), zero_fill=current.days())
                result.add_summary(self.merger.upsert_traffic_daily_batch(ctx.site_url, records))
                result.windows_processed += 1

        log.info(f"Campaign {ctx.campaign_id} traffic sync: {result.records_upserted} records")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch(self, ctx: CampaignContext, window: DateWindow, dimensions: List[str]) -> Optional[List[SearchAnalyticsRow]]:
        rows = await ctx.connector.get_analytics(
            ctx.site_url,
            window.start,
            window.last_day,
            dimensions,
            wait_for_all_data=self.wait_for_all_data,
        )
        if rows is None:
            log.info(f"Campaign {ctx.campaign_id}: no data for {dimensions} {window.label}")
        return rows

    def _keyword_days(
        self,
        ctx: CampaignContext,
        window: DateWindow,
        keyword_rows: Optional[Iterable[SearchAnalyticsRow]],
        page_rows: Optional[Iterable[SearchAnalyticsRow]]
    ) -> Dict[Tuple[date, str], KeywordMetrics]:
        """One metrics entry per (day, tracked keyword) in the window"""
        query_map = keyword_lookup(ctx.keywords)
        keys = [(day, keyword) for day in window.iter_days() for keyword in ctx.keywords]

        keyword_records = aggregate(
            keyword_rows,
            restrict_key(dimension_key(KEYWORD_DIMENSIONS, "date", "query", query_map=query_map), keys),
            zero_fill=keys,
        )
        page_records = aggregate(
            page_rows,
            restrict_key(dimension_key(KEYWORD_PAGE_DIMENSIONS, "date", "query", query_map=query_map), keys),
            page_key=page_dimension(KEYWORD_PAGE_DIMENSIONS),
        )
        return combine_keyword_streams(keyword_records, page_records, keys)

    def _rollup_months(self, ctx: CampaignContext, windows: Iterable[DateWindow], result: FlowResult):
        """Refresh monthly stats for the months the windows touched"""
        months = sorted({(day.year, day.month) for window in windows for day in (window.start, window.last_day)})
        for year, month in months:
            for keyword in ctx.keywords:
                try:
                    if self.merger.rollup_month_from_daily(ctx.site_url, keyword, year, month) is not None:
                        result.records_upserted += 1
                except PersistenceError as e:
                    result.records_failed += 1
                    result.errors.append(str(e))
                    log.error(f"Monthly rollup failed for '{keyword}' {year}-{month:02d}: {e}")
