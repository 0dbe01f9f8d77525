"""
Google Search Console Search Analytics connector
"""
from typing import Any, List, Optional, Sequence
from datetime import date
import asyncio
from functools import partial
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from gsc_sync.connectors.base_connector import BaseConnector
from gsc_sync.config import get_settings
from gsc_sync.exceptions import ConfigurationError, ExternalFetchError
from gsc_sync.services.dimension_aggregator import DIMENSIONS, SearchAnalyticsRow
from gsc_sync.utils.logger import log
from gsc_sync.utils.retry import RetryStats, http_status, is_quota_error, is_retryable_error

settings = get_settings()

SCOPES = ['https://www.googleapis.com/auth/webmasters.readonly']


class SearchConsoleConnector(BaseConnector):
    """Connector for the Search Console searchanalytics.query endpoint"""

    def __init__(
        self,
        credentials: Any = None,
        service: Any = None,
        request_timeout: Optional[float] = None,
        page_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        quota_wait: Optional[float] = None,
        row_limit: Optional[int] = None
    ):
        super().__init__("Google Search Console")
        self.credentials = credentials
        self.service = service
        self.request_timeout = request_timeout if request_timeout is not None else settings.gsc_request_timeout_seconds
        self.page_delay = page_delay if page_delay is not None else settings.gsc_page_delay_seconds
        self.quota_wait = quota_wait if quota_wait is not None else settings.gsc_quota_wait_seconds
        self.row_limit = row_limit or settings.gsc_row_limit
        max_retries = max_retries if max_retries is not None else settings.gsc_fetch_max_retries
        self.RETRY_MAX_ATTEMPTS = max_retries + 1

    @classmethod
    def from_account(cls, account, **kwargs) -> "SearchConsoleConnector":
        """Connector authorised with a linked Google account's OAuth tokens"""
        if account is None or not (account.refresh_token or account.access_token):
            raise ConfigurationError("Linked Google account has no OAuth tokens")
        credentials = Credentials(
            token=account.access_token,
            refresh_token=account.refresh_token,
            token_uri=settings.gsc_token_uri,
            client_id=settings.gsc_client_id,
            client_secret=settings.gsc_client_secret,
            scopes=SCOPES,
        )
        return cls(credentials=credentials, **kwargs)

    @classmethod
    def from_service_account(cls, credentials_path: str, **kwargs) -> "SearchConsoleConnector":
        """Connector authorised with a service account key file"""
        credentials = service_account.Credentials.from_service_account_file(
            credentials_path,
            scopes=SCOPES
        )
        return cls(credentials=credentials, **kwargs)

    async def connect(self) -> bool:
        """Build the Search Console API client"""
        if self.service is not None:
            return True
        try:
            self.service = build('searchconsole', 'v1', credentials=self.credentials, cache_discovery=False)
            log.info("Connected to Google Search Console")
            return True
        except Exception as e:
            log.error(f"Failed to connect to Search Console: {str(e)}")
            return False

    async def validate_connection(self) -> bool:
        """Validate Search Console connection"""
        try:
            if not await self.connect():
                return False
            await asyncio.wait_for(
                asyncio.to_thread(self.service.sites().list().execute),
                timeout=self.request_timeout
            )
            return True
        except Exception as e:
            log.error(f"Search Console connection validation failed: {str(e)}")
            return False

    async def get_analytics(
        self,
        site_url: str,
        start_date: date,
        end_date: date,
        dimensions: Sequence[str],
        wait_for_all_data: bool = False
    ) -> Optional[List[SearchAnalyticsRow]]:
        """
        Fetch every row for a date range, paginating past the row limit.

        Args:
            site_url: Search Console property
            start_date: First day (inclusive)
            end_date: Last day (inclusive)
            dimensions: Ordered subset of date, query, page
            wait_for_all_data: Wait out quota errors instead of failing

        Returns:
            Rows with keys in the requested dimension order, or None when
            Search Console has no data for the range

        Raises:
            ExternalFetchError: request failed after retries (timeout, auth, quota)
        """
        dimensions = list(dimensions)
        unknown = [d for d in dimensions if d not in DIMENSIONS]
        if unknown or len(set(dimensions)) != len(dimensions):
            raise ValueError(f"Unsupported dimensions: {dimensions}")
        if end_date < start_date:
            raise ValueError(f"end_date {end_date} is before start_date {start_date}")

        if self.service is None and not await self.connect():
            raise ExternalFetchError("Could not build Search Console client")

        window = f"{start_date.isoformat()}..{end_date.isoformat()}"
        rows: List[SearchAnalyticsRow] = []
        start_row = 0
        stats = RetryStats()
        retry_delay = partial(self._fetch_retry_delay, wait_for_all_data=wait_for_all_data)

        while True:
            body = {
                'startDate': start_date.strftime('%Y-%m-%d'),
                'endDate': end_date.strftime('%Y-%m-%d'),
                'dimensions': dimensions,
                'rowLimit': self.row_limit,
                'startRow': start_row
            }

            try:
                response = await self._retry_operation(
                    partial(self._execute_query, site_url, body),
                    operation_name=f"searchanalytics.query {dimensions} {window}",
                    retry_stats=stats,
                    retry_delay=retry_delay
                )
            except Exception as e:
                self.error_count += 1
                status = http_status(e)
                log.error(
                    f"Search Console fetch failed for {site_url} {dimensions} {window} "
                    f"after {stats.attempts} attempts: {e}"
                )
                raise ExternalFetchError(
                    f"Search Console fetch failed for {window}: {e}",
                    status=status,
                    retryable=is_retryable_error(e) or is_quota_error(e)
                ) from e

            page_rows = (response or {}).get('rows', [])
            rows.extend(SearchAnalyticsRow.from_api(row) for row in page_rows)

            if len(page_rows) < self.row_limit:
                break

            start_row += self.row_limit
            log.info(f"Fetched {len(rows)} rows for {site_url} {window}, requesting next page...")
            if self.page_delay > 0:
                await asyncio.sleep(self.page_delay)

        if not rows:
            log.info(f"No Search Console data for {site_url} {dimensions} {window}")
            return None

        log.debug(f"Fetched {len(rows)} rows for {site_url} {dimensions} {window}")
        return rows

    async def _execute_query(self, site_url: str, body: dict) -> dict:
        request = self.service.searchanalytics().query(siteUrl=site_url, body=body)
        return await asyncio.wait_for(
            asyncio.to_thread(request.execute),
            timeout=self.request_timeout
        )

    def _fetch_retry_delay(self, error: Exception, attempt: int, wait_for_all_data: bool = False) -> Optional[float]:
        if is_quota_error(error):
            if not wait_for_all_data:
                log.warning(f"Search Console quota exceeded, not waiting: {error}")
                return None
            log.warning(f"Search Console quota exceeded, waiting {self.quota_wait:.0f}s before retrying")
            return self.quota_wait
        return self._default_retry_delay(error, attempt)
