#!/usr/bin/env python3
"""
cache_feeds.py - FIFO RSS cache

For every url/source_<N>.txt:
- fetch the live feed
- load the previous cache (remote mirror if configured, else cacheluu_<N>.xml)
- keep only items not seen before (guid, else link)
- put new items on top, cap to MAX_ITEMS
- write cacheluu_<N>.xml and cacheluu_<N>.html atomically

A failing source is logged and skipped; only setup errors stop the run.
"""

import argparse
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed

from feed_fetch import URL_DIR, fetch_entries, load_sources
from feed_merge import MAX_ITEMS, ORDER_ARRIVAL, ORDER_POLICIES, reconcile
from feed_store import OUTPUT_DIR, REMOTE_TIMEOUT, ParseResult, load_prior, write_outputs

# ===== CONFIG =====
ORDER_POLICY = ORDER_ARRIVAL
WORKERS = 1
MIRROR_ENV = "CACHE_MIRROR_URL"


def process_source(source, fetcher, cache_source, writer,
                   max_items=MAX_ITEMS, order=ORDER_POLICY):
    """
    Update one source's cache. Never raises.

    Returns the number of new items (0 means nothing written), or None when the
    source failed at fetch, reconcile or write time.
    """
    tag = f"[source {source.source_id}]"
    try:
        fresh = fetcher(source.url)
    except Exception as e:
        print(f"{tag} fetch failed for {source.url}: {e}")
        return None

    try:
        prior = cache_source(source)
    except Exception as e:
        prior = ParseResult([], f"cache lookup failed: {e}")
    if not prior.ok:
        print(f"{tag} no usable prior cache ({prior.error}); starting empty")

    try:
        merged, added = reconcile(fresh, prior.entries, max_items=max_items, order=order)
    except Exception as e:
        print(f"{tag} merge failed: {e}")
        return None

    if added == 0:
        print(f"{tag} no new items ({len(fresh)} fetched)")
        return 0

    try:
        writer(source, merged)
    except Exception as e:
        print(f"{tag} write failed: {e}")
        return None
    print(f"{tag} added {added} new items ({len(merged)} cached)")
    return added


def run_sources(sources, fetcher, cache_source, writer,
                max_items=MAX_ITEMS, order=ORDER_POLICY, workers=WORKERS):
    """Process every source; sequential when workers <= 1. Returns outcome counts."""
    summary = {"updated": 0, "unchanged": 0, "failed": 0}

    def record(result):
        if result is None:
            summary["failed"] += 1
        elif result == 0:
            summary["unchanged"] += 1
        else:
            summary["updated"] += 1

    def one(source):
        return process_source(source, fetcher, cache_source, writer,
                              max_items=max_items, order=order)

    if workers <= 1 or len(sources) <= 1:
        for source in sources:
            record(one(source))
        return summary

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(one, s) for s in sources]
        for fut in as_completed(futures):
            record(fut.result())
    return summary


def _parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Merge RSS feeds into bounded FIFO caches.")
    ap.add_argument("--url-dir", default=URL_DIR, help="directory holding source_<N>.txt files")
    ap.add_argument("--out-dir", default=OUTPUT_DIR, help="where cacheluu_<N>.xml/.html are written")
    ap.add_argument("--max-items", type=int, default=MAX_ITEMS, help="items kept per cache")
    ap.add_argument("--order", choices=ORDER_POLICIES, default=ORDER_POLICY,
                    help="arrival: new items on top; time: newest pubDate first")
    ap.add_argument("--workers", type=int, default=WORKERS, help="sources processed in parallel")
    ap.add_argument("--mirror-url", default=os.getenv(MIRROR_ENV) or None,
                    help="remote cache URL template with {n} for the source number")
    ap.add_argument("--timeout", type=float, default=REMOTE_TIMEOUT,
                    help="HTTP timeout for feeds and the remote cache (s)")
    ap.add_argument("--dry-run", action="store_true", help="merge and log but do not write files")
    args = ap.parse_args(argv)
    if args.max_items < 1:
        ap.error("--max-items must be at least 1")
    return args


def main(argv=None):
    args = _parse_args(argv)
    print("[main] starting")

    try:
        sources = load_sources(args.url_dir)
    except OSError as e:
        raise SystemExit(f"[main] cannot read source directory {args.url_dir}: {e}")
    if not sources:
        print(f"[main] no source files in {args.url_dir}; nothing to do")
        return 0
    print(f"[main] {len(sources)} sources, max {args.max_items} items, order={args.order}")

    if not args.dry_run:
        os.makedirs(args.out_dir, exist_ok=True)

    def cache_source(source):
        return load_prior(source, mirror_url=args.mirror_url,
                          out_dir=args.out_dir, timeout=args.timeout)

    def writer(source, entries):
        if args.dry_run:
            print(f"[source {source.source_id}] dry-run: {len(entries)} items not written")
            return
        write_outputs(source, entries, out_dir=args.out_dir)

    def fetcher(url):
        return fetch_entries(url, timeout=args.timeout)

    summary = run_sources(sources, fetcher, cache_source, writer,
                          max_items=args.max_items, order=args.order, workers=args.workers)
    print(f"[main] done: {summary['updated']} updated, "
          f"{summary['unchanged']} unchanged, {summary['failed']} failed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
