"""
Dimension aggregation for Search Analytics rows.

Every rollup level in the engine (page -> day, day -> month, page -> range)
goes through ``aggregate``:

1. rows are partitioned by a caller supplied grouping key
2. per partition clicks and impressions are summed and
   position is weighted by impressions: sum(position * impressions) / sum(impressions)
3. position and ctr are 0 when the partition has no impressions
4. when a page is available the page with the most impressions is the best
   page; ties keep the page seen first

Stored position/ctr keep full precision. Only ``ctr_percent`` rounds, for
display.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from gsc_sync.utils.url_parsing import decode_page_url

DIMENSIONS = ("date", "query", "page")

GroupKeyFn = Callable[["SearchAnalyticsRow"], Optional[Hashable]]
PageKeyFn = Callable[["SearchAnalyticsRow"], Optional[str]]


@dataclass(frozen=True)
class SearchAnalyticsRow:
    """One row of a searchanalytics.query response"""
    keys: Tuple[str, ...]
    # Values in the order the dimensions were requested
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    position: Optional[float] = None

    @classmethod
    def from_api(cls, row: Dict[str, Any]) -> "SearchAnalyticsRow":
        position = row.get("position")
        return cls(
            keys=tuple(row.get("keys") or ()),
            clicks=int(row.get("clicks", 0) or 0),
            impressions=int(row.get("impressions", 0) or 0),
            ctr=float(row.get("ctr", 0) or 0),
            position=float(position) if position is not None else None,
        )


@dataclass
class AggregatedRecord:
    """Collapsed metrics for one grouping key"""
    key: Hashable
    clicks: int = 0
    impressions: int = 0
    position: float = 0.0
    ctr: float = 0.0
    best_page: Optional[str] = None
    best_page_impressions: int = 0
    row_count: int = 0

    @property
    def ctr_percent(self) -> float:
        """CTR as a percentage rounded for display"""
        return round(self.ctr * 100, 1)

    @property
    def is_stub(self) -> bool:
        """Zero-filled record for a key that had no rows"""
        return self.row_count == 0


@dataclass
class KeywordMetrics:
    """Daily (or monthly) keyword values ready for persistence"""
    average_rank: float
    search_volume: int
    clicks: int
    top_ranking_page_url: Optional[str] = None


class _Partition:
    """Running sums for one grouping key"""

    __slots__ = ("clicks", "impressions", "weighted_position", "positioned_impressions",
                 "row_count", "page_impressions")

    def __init__(self):
        self.clicks = 0
        self.impressions = 0
        self.weighted_position = 0.0
        self.positioned_impressions = 0
        self.row_count = 0
        self.page_impressions: Dict[str, int] = {}  # insertion ordered

    def add(self, row: SearchAnalyticsRow, page: Optional[str] = None):
        self.row_count += 1
        self.clicks += row.clicks
        self.impressions += row.impressions
        if row.position is not None:
            self.weighted_position += row.position * row.impressions
            self.positioned_impressions += row.impressions
        if page:
            self.page_impressions[page] = self.page_impressions.get(page, 0) + row.impressions

    def best_page(self) -> Tuple[Optional[str], int]:
        best, best_impressions = None, 0
        for page, impressions in self.page_impressions.items():
            if best is None or impressions > best_impressions:
                best, best_impressions = page, impressions
        return best, best_impressions

    def to_record(self, key: Hashable) -> AggregatedRecord:
        # Rows without a position (never sent by the API) carry no rank weight
        position = (
            self.weighted_position / self.positioned_impressions
            if self.positioned_impressions > 0 else 0.0
        )
        ctr = self.clicks / self.impressions if self.impressions > 0 else 0.0
        best_page, best_page_impressions = self.best_page()
        return AggregatedRecord(
            key=key,
            clicks=self.clicks,
            impressions=self.impressions,
            position=position,
            ctr=ctr,
            best_page=best_page,
            best_page_impressions=best_page_impressions,
            row_count=self.row_count,
        )


def aggregate(
    rows: Optional[Iterable[SearchAnalyticsRow]],
    group_key: GroupKeyFn,
    page_key: Optional[PageKeyFn] = None,
    zero_fill: Optional[Iterable[Hashable]] = None
) -> Dict[Hashable, AggregatedRecord]:
    """
    Collapse rows into one record per grouping key.

    Args:
        rows: Rows to aggregate; None (no data for the window) is an empty set
        group_key: Maps a row to its grouping key, or None to drop the row
        page_key: Maps a row to its page URL when pages were requested
        zero_fill: Keys that must appear in the result even without rows

    Returns:
        Records keyed by grouping key, in first-seen order followed by stubs
    """
    partitions: Dict[Hashable, _Partition] = {}
    for row in rows or ():
        key = group_key(row)
        if key is None:
            continue
        partition = partitions.get(key)
        if partition is None:
            partition = partitions[key] = _Partition()
        partition.add(row, page_key(row) if page_key else None)

    result = {key: partition.to_record(key) for key, partition in partitions.items()}

    if zero_fill is not None:
        for key in zero_fill:
            if key not in result:
                result[key] = AggregatedRecord(key=key)

    return result


# ---------------------------------------------------------------------------
# Grouping key builders
# ---------------------------------------------------------------------------

def _dimension_index(dimensions: Sequence[str], name: str) -> int:
    try:
        return list(dimensions).index(name)
    except ValueError:
        raise ValueError(f"Dimension '{name}' was not requested (dimensions={list(dimensions)})") from None


def _parse_value(name: str, value: str):
    if name == "date":
        return date.fromisoformat(value)
    return value


def keyword_lookup(keywords: Iterable[str]) -> Dict[str, str]:
    """Map lowercased query text to the tracked keyword it belongs to"""
    lookup = {}
    for keyword in keywords:
        lookup.setdefault(keyword.lower(), keyword)
    return lookup


def _resolve_query(value: str, query_map: Optional[Dict[str, str]]) -> Optional[str]:
    if query_map is None:
        return value
    return query_map.get(value.lower())


def dimension_key(
    dimensions: Sequence[str],
    *names: str,
    query_map: Optional[Dict[str, str]] = None
) -> GroupKeyFn:
    """
    Grouping key from the named dimensions, e.g. ``dimension_key(dims, "date", "query")``.

    Date values become ``datetime.date``. A single name yields a scalar key,
    several names a tuple. With ``query_map`` the query is replaced by the
    tracked keyword it maps to and rows for untracked queries are dropped.
    """
    if not names:
        raise ValueError("At least one dimension is required for a grouping key")
    indexes = [(name, _dimension_index(dimensions, name)) for name in names]

    def key(row: SearchAnalyticsRow):
        values = []
        for name, index in indexes:
            value = row.keys[index]
            if name == "query":
                value = _resolve_query(value, query_map)
                if value is None:
                    return None
            values.append(_parse_value(name, value))
        return values[0] if len(values) == 1 else tuple(values)

    return key


def month_dimension_key(
    dimensions: Sequence[str],
    *names: str,
    query_map: Optional[Dict[str, str]] = None
) -> GroupKeyFn:
    """Grouping key ``(year, month, *names)`` built from the date dimension"""
    date_index = _dimension_index(dimensions, "date")
    rest = dimension_key(dimensions, *names, query_map=query_map) if names else None

    def key(row: SearchAnalyticsRow):
        day = date.fromisoformat(row.keys[date_index])
        if rest is None:
            return (day.year, day.month)
        value = rest(row)
        if value is None:
            return None
        if not isinstance(value, tuple):
            value = (value,)
        return (day.year, day.month) + value

    return key


def constant_key(value: Hashable = "all") -> GroupKeyFn:
    """Every row in one partition"""
    return lambda row: value


def page_dimension(dimensions: Sequence[str]) -> Optional[PageKeyFn]:
    """Page accessor for rows that carry a page dimension, else None"""
    if "page" not in dimensions:
        return None
    index = _dimension_index(dimensions, "page")
    return lambda row: row.keys[index]


def restrict_key(group_key: GroupKeyFn, allowed: Iterable[Hashable]) -> GroupKeyFn:
    """Drop rows whose key is outside ``allowed``"""
    allowed = set(allowed)

    def key(row: SearchAnalyticsRow):
        value = group_key(row)
        return value if value in allowed else None

    return key


# ---------------------------------------------------------------------------
# Higher level reductions
# ---------------------------------------------------------------------------

def combine_keyword_streams(
    keyword_records: Dict[Hashable, AggregatedRecord],
    page_records: Dict[Hashable, AggregatedRecord],
    keys: Optional[Iterable[Hashable]] = None
) -> Dict[Hashable, KeywordMetrics]:
    """
    Merge the keyword-only and keyword+page aggregations for the same keys.

    Search volume and clicks come from the keyword-only stream (page rows
    count an impression once per page shown). Average rank is the
    impression-weighted rank across pages, falling back to the keyword-only
    rank when no page rows exist. The top page comes from the page stream.
    """
    ordered: List[Hashable] = list(keyword_records)
    ordered += [key for key in page_records if key not in keyword_records]
    if keys is not None:
        seen = set(ordered)
        ordered += [key for key in keys if key not in seen]

    combined = {}
    for key in ordered:
        kw = keyword_records.get(key)
        pg = page_records.get(key)

        source = kw if kw is not None and not kw.is_stub else pg
        search_volume = source.impressions if source is not None else 0
        clicks = source.clicks if source is not None else 0

        if pg is not None and pg.impressions > 0:
            average_rank = pg.position
        elif kw is not None:
            average_rank = kw.position
        else:
            average_rank = 0.0

        combined[key] = KeywordMetrics(
            average_rank=average_rank,
            search_volume=search_volume,
            clicks=clicks,
            top_ranking_page_url=decode_page_url(pg.best_page) if pg is not None else None,
        )
    return combined


def rollup_daily_stats(daily_stats: Iterable[Any], key: Hashable = "month") -> AggregatedRecord:
    """
    Roll daily keyword records up with the same weighted formula.

    Accepts anything with ``average_rank``, ``search_volume``, ``clicks`` and
    ``top_ranking_page_url`` attributes (KeywordDailyStat rows or
    KeywordMetrics). Days without impressions carry no rank weight.
    """
    rows = []
    for stat in daily_stats:
        impressions = int(stat.search_volume or 0)
        rows.append(SearchAnalyticsRow(
            keys=(stat.top_ranking_page_url or "",),
            clicks=int(stat.clicks or 0),
            impressions=impressions,
            position=stat.average_rank if impressions > 0 else None,
        ))

    records = aggregate(
        rows,
        constant_key(key),
        page_key=lambda row: row.keys[0] or None,
        zero_fill=[key],
    )
    return records[key]
