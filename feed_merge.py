"""
feed_merge.py - dedupe + merge of freshly fetched items into a bounded cache

An entry is a plain dict keyed by RSS <item> element name
("guid", "link", "title", "pubDate", plus anything else the feed carried).
A value is a string, a dict for an element with attributes
({"@url": ..., "#text": ...}), or a list of those for repeated elements.
"""

from datetime import timezone
from dateutil import parser as dateparser

MAX_ITEMS = 100
ORDER_ARRIVAL = "arrival"
ORDER_TIME = "time"
ORDER_POLICIES = (ORDER_ARRIVAL, ORDER_TIME)

OLDEST = float("-inf")


def field_text(value) -> str:
    """Plain text of a stored field: first non-empty string of a list, '#text' of a dict."""
    if isinstance(value, list):
        for v in value:
            t = field_text(v)
            if t:
                return t
        return ""
    if isinstance(value, dict):
        value = value.get("#text")
    if isinstance(value, str):
        return value.strip()
    return ""


def identity(entry):
    """guid if present, else link. None means the entry can never be deduped."""
    for key in ("guid", "link"):
        value = field_text(entry.get(key))
        if value:
            return value
    return None


def pubdate_timestamp(entry) -> float:
    """Epoch seconds for entry['pubDate']; OLDEST when missing or unparseable."""
    s = field_text(entry.get("pubDate"))
    if not s:
        return OLDEST
    try:
        dt = dateparser.parse(s)
    except (ValueError, OverflowError):
        return OLDEST
    if dt is None:
        return OLDEST
    if dt.tzinfo is None:
        # naive dates are taken as UTC
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.timestamp()
    except (ValueError, OverflowError):
        return OLDEST


def admit_new(fresh, prior):
    """Entries of fresh whose identity is unseen in prior (first occurrence wins)."""
    seen = {identity(e) for e in prior}
    seen.discard(None)
    admitted = []
    for e in fresh:
        key = identity(e)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        admitted.append(e)
    return admitted


def dedupe(entries):
    """Drop later entries repeating an identity already seen."""
    seen = set()
    out = []
    for e in entries:
        key = identity(e)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        out.append(e)
    return out


def reconcile(fresh, prior, max_items=MAX_ITEMS, order=ORDER_ARRIVAL):
    """
    Merge fresh entries into prior cache contents.

    Returns (merged, added). added == 0 means nothing new arrived and prior is
    handed back untouched, so the caller can skip writing. Otherwise new
    entries are combined with prior (itself deduped), ordered by the policy
    and cut to max_items:
      - "arrival": new entries (fetch order) then prior entries (prior order)
      - "time": newest pubDate first, undated last, ties keep arrival order
    Neither input sequence is modified.
    """
    if max_items < 1:
        raise ValueError(f"max_items must be >= 1, got {max_items}")
    if order not in ORDER_POLICIES:
        raise ValueError(f"unknown order policy: {order!r}")

    prior = list(prior)
    admitted = admit_new(fresh, prior)
    if not admitted:
        return prior, 0

    combined = admitted + dedupe(prior)
    if order == ORDER_TIME:
        # sorted() is stable with reverse=True, so equal keys keep arrival order
        combined = sorted(combined, key=pubdate_timestamp, reverse=True)

    return combined[:max_items], len(admitted)
