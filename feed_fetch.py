"""
feed_fetch.py - source config loading and live feed fetching (requests + feedparser)
"""

import os
import re
from typing import List, NamedTuple

import feedparser
import requests

URL_DIR = "url"
SOURCE_PREFIX = "source_"
SOURCE_SUFFIX = ".txt"
DEFAULT_SOURCE_ID = 1
FETCH_TIMEOUT = 20

CONTENT_ENCODED = "{http://purl.org/rss/1.0/modules/content/}encoded"


class FetchError(RuntimeError):
    """Live feed unreachable or unparseable."""


class SourceConfig(NamedTuple):
    source_id: int
    url: str
    path: str = ""


def source_id_from_name(name: str) -> int:
    """First run of digits in the file name; DEFAULT_SOURCE_ID when there is none."""
    m = re.search(r"\d+", name)
    if not m:
        return DEFAULT_SOURCE_ID
    return int(m.group(0))


def load_sources(url_dir: str = URL_DIR) -> List[SourceConfig]:
    """
    Read every source_*.txt in url_dir (one feed URL per file).

    A missing url_dir raises OSError; the caller treats that as fatal.
    Unreadable or empty files are skipped.
    Sources sharing an id write to the same cache; that is reported, not fixed.
    """
    names = sorted(
        n for n in os.listdir(url_dir)
        if n.startswith(SOURCE_PREFIX) and n.endswith(SOURCE_SUFFIX)
    )
    sources = []
    seen_ids = {}
    for name in names:
        path = os.path.join(url_dir, name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                url = f.read().strip()
        except (OSError, UnicodeDecodeError) as e:
            print(f"[sources] {name} unreadable: {e}")
            continue
        if not url:
            print(f"[sources] {name} is empty; skipping")
            continue
        sid = source_id_from_name(name)
        if sid in seen_ids:
            print(f"[sources] WARNING: {name} and {seen_ids[sid]} share cache id {sid}")
        else:
            seen_ids[sid] = name
        sources.append(SourceConfig(sid, url, path))
    return sources


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _enclosure(enc) -> dict:
    attrs = {}
    for attr, key in (("url", "href"), ("length", "length"), ("type", "type")):
        value = _text(enc.get(key))
        if value:
            attrs["@" + attr] = value
    return attrs


def _one_or_many(values):
    return values if len(values) > 1 else values[0]


def entry_from_parsed(e) -> dict:
    """Map a feedparser entry onto an RSS item dict. Empty fields are dropped."""
    item = {}
    for key, value in (
        ("guid", e.get("id")),
        ("title", e.get("title")),
        ("link", e.get("link")),
        ("pubDate", e.get("published") or e.get("updated")),
        ("description", e.get("summary")),
        ("author", e.get("author")),
        ("comments", e.get("comments")),
    ):
        value = _text(value)
        if value:
            item[key] = value

    categories = [_text(t.get("term")) for t in e.get("tags", []) or []]
    categories = [c for c in categories if c]
    if categories:
        item["category"] = _one_or_many(categories)

    enclosures = [_enclosure(enc) for enc in e.get("enclosures", []) or []]
    enclosures = [enc for enc in enclosures if "@url" in enc]
    if enclosures:
        item["enclosure"] = _one_or_many(enclosures)

    # feedparser also files <description> under content; only keep a distinct body
    bodies = [_text(c.get("value")) for c in e.get("content", []) or []]
    bodies = [b for b in bodies if b and b != item.get("description")]
    if bodies:
        item[CONTENT_ENCODED] = bodies[0]
    return item


def parse_feed(content, url: str = "") -> List[dict]:
    """Parse feed bytes. Raises FetchError when nothing usable comes out."""
    feed = feedparser.parse(content)
    if feed.bozo and not feed.entries:
        raise FetchError(f"unparseable feed {url}: {feed.get('bozo_exception')}")
    return [entry_from_parsed(e) for e in feed.entries]


def fetch_entries(url: str, timeout=FETCH_TIMEOUT) -> List[dict]:
    """Download and parse a live feed. Raises FetchError on network/HTTP errors or unparseable feeds."""
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise FetchError(f"request failed for {url}: {e}") from e
    if r.status_code >= 400:
        raise FetchError(f"HTTP {r.status_code} for {url}")
    return parse_feed(r.content, url)
