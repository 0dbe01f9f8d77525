#!/usr/bin/env python3
"""
Aggregate a raw Search Console export offline

Reproduces the sync engine's aggregation on a saved searchanalytics
response: rows are grouped per (date, query) across pages, then rolled up
per (month, query) with impressions-weighted position.

Usage:
    python scripts/aggregate_gsc_raw.py --file debug/gsc_keywords_raw.json
    python scripts/aggregate_gsc_raw.py --file raw.json --queries "seo audit,site audit" --months 2025-07,2025-08

The file must look like {"rows": [{"keys": [date, query, page], "clicks": .., "impressions": .., "position": ..}]}
"""
import sys
import json
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from gsc_sync.services.dimension_aggregator import (
    SearchAnalyticsRow,
    aggregate,
    dimension_key,
    keyword_lookup,
    month_dimension_key,
    page_dimension,
)
from gsc_sync.utils.url_parsing import decode_page_url

RAW_DIMENSIONS = ["date", "query", "page"]


def _csv(value):
    return [part.strip() for part in value.split(",") if part.strip()]


def _month(value):
    try:
        year, month = value.split("-")
        parsed = (int(year), int(month))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}', expected YYYY-MM")
    if not 1 <= parsed[1] <= 12:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}', expected YYYY-MM")
    return parsed


def load_rows(file_path):
    """Read the export and return (rows, skipped_count)"""
    with open(file_path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or not isinstance(data.get("rows"), list):
        raise ValueError("Invalid JSON structure: expected {\"rows\": [...]}")

    rows, skipped = [], 0
    for raw in data["rows"]:
        if not isinstance(raw, dict) or len(raw.get("keys") or []) < len(RAW_DIMENSIONS):
            skipped += 1
            continue
        rows.append(SearchAnalyticsRow.from_api(raw))
    return rows, skipped


def aggregate_monthly(rows, queries=None, months=None):
    """
    Monthly (month, query) records plus the number of active days behind each.

    Queries match case-insensitively. Without ``queries`` every query in the
    file is reported; without ``months`` every month present.
    """
    query_map = keyword_lookup(queries) if queries else None

    monthly_key = month_dimension_key(RAW_DIMENSIONS, "query", query_map=query_map)
    daily_key = dimension_key(RAW_DIMENSIONS, "date", "query", query_map=query_map)
    if months:
        monthly_key = _month_filter(monthly_key, months)
        daily_key = _daily_month_filter(daily_key, months)

    zero_fill = None
    if queries and months:
        zero_fill = [(year, month, query) for year, month in sorted(months) for query in queries]

    monthly = aggregate(rows, monthly_key, page_key=page_dimension(RAW_DIMENSIONS), zero_fill=zero_fill)
    daily = aggregate(rows, daily_key)

    active_days = {}
    for day, query in daily:
        key = (day.year, day.month, query)
        active_days[key] = active_days.get(key, 0) + 1

    results = []
    for key in sorted(monthly, key=lambda k: (k[0], k[1], str(k[2]))):
        record = monthly[key]
        results.append({
            "month": f"{key[0]:04d}-{key[1]:02d}",
            "query": key[2],
            "best_page": decode_page_url(record.best_page) or "",
            "impressions": record.impressions,
            "clicks": record.clicks,
            "position": round(record.position, 2),
            "ctr_percent": record.ctr_percent,
            "days": active_days.get(key, 0),
        })
    return results


def _month_filter(group_key, months):
    allowed = set(months)

    def key(row):
        value = group_key(row)
        if value is None or (value[0], value[1]) not in allowed:
            return None
        return value

    return key


def _daily_month_filter(group_key, months):
    allowed = set(months)

    def key(row):
        value = group_key(row)
        if value is None or (value[0].year, value[0].month) not in allowed:
            return None
        return value

    return key


def main(argv=None):
    parser = argparse.ArgumentParser(description="Aggregate a raw Search Console export per month and query")
    parser.add_argument("--file", required=True, help="Path to the exported JSON")
    parser.add_argument("--queries", type=_csv, default=None, help="Comma separated queries (default: all)")
    parser.add_argument("--months", type=lambda v: [_month(m) for m in _csv(v)], default=None,
                        help="Comma separated YYYY-MM months (default: all)")
    args = parser.parse_args(argv)

    try:
        rows, skipped = load_rows(args.file)
        results = aggregate_monthly(rows, queries=args.queries, months=args.months)
    except FileNotFoundError:
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 1
    except (ValueError, TypeError, json.JSONDecodeError) as e:
        print(f"Error: could not read {args.file}: {e}", file=sys.stderr)
        return 1

    print(f"Diagnostics: rows={len(rows)} skipped={skipped}")
    print("Monthly Results:")
    for r in results:
        print(
            f"{r['month']} | {r['query']} | position={r['position']:.2f} | impressions={r['impressions']} "
            f"| clicks={r['clicks']} | ctr={r['ctr_percent']}% | days={r['days']} | bestPage={r['best_page']}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
