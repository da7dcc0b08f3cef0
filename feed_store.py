"""
feed_store.py - prior cache lookup (remote mirror, then local file) and output writing

Cache files are plain RSS 2.0; the HTML page is regenerated from the same entries.
"""

import html
import os
import re
import tempfile
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional

import requests

from feed_merge import OLDEST, field_text, pubdate_timestamp

OUTPUT_DIR = "."
CACHE_PREFIX = "cacheluu_"
REMOTE_TIMEOUT = 20
CHANNEL_DESCRIPTION = "FIFO cached RSS feed"

REMOTE_FOUND = "found"
REMOTE_NOT_FOUND = "not_found"
REMOTE_UNAVAILABLE = "unavailable"

# prefixes for namespaced pass-through fields when the cache is written back
NAMESPACES = {
    "content": "http://purl.org/rss/1.0/modules/content/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "atom": "http://www.w3.org/2005/Atom",
    "media": "http://search.yahoo.com/mrss/",
    "itunes": "http://www.itunes.com/dtds/podcast-1.0.dtd",
}
for _prefix, _uri in NAMESPACES.items():
    ET.register_namespace(_prefix, _uri)

# characters XML 1.0 does not allow anywhere in a document
_XML_INVALID = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


class ParseResult(NamedTuple):
    entries: List[dict]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RemoteResult(NamedTuple):
    status: str
    body: bytes = b""
    reason: str = ""


def cache_paths(source_id: int, out_dir: str = OUTPUT_DIR):
    base = os.path.join(out_dir, f"{CACHE_PREFIX}{source_id}")
    return base + ".xml", base + ".html"


def channel_title(url: str) -> str:
    return f"Cached Feed from {url}"


# ===== PARSE =====
def _field_value(el):
    """Text of an item child, or {"@attr": ..., "#text": ...} when it carries attributes."""
    text = (el.text or "").strip()
    if not el.attrib:
        return text
    value = {"@" + k: v for k, v in el.attrib.items()}
    if text:
        value["#text"] = text
    return value


def parse_cache_xml(text) -> ParseResult:
    """Turn a cached RSS document (str or bytes) into entries. Never raises."""
    if not text or not text.strip():
        return ParseResult([], "empty document")
    try:
        root = ET.fromstring(text)
    except (ET.ParseError, ValueError, LookupError) as e:
        return ParseResult([], f"xml error: {e}")
    if root.tag != "rss":
        return ParseResult([], f"unexpected root <{root.tag}>")
    channel = root.find("channel")
    if channel is None:
        return ParseResult([], "missing <channel>")

    entries = []
    for item in channel.findall("item"):
        entry = {}
        for child in item:
            value = _field_value(child)
            if not value:
                continue
            if child.tag in entry:
                prev = entry[child.tag]
                entry[child.tag] = (prev if isinstance(prev, list) else [prev]) + [value]
            else:
                entry[child.tag] = value
        entries.append(entry)
    return ParseResult(entries)


# ===== PRIOR CACHE =====
def fetch_remote_cache(url: str, timeout=REMOTE_TIMEOUT) -> RemoteResult:
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        return RemoteResult(REMOTE_UNAVAILABLE, reason=str(e))
    if r.status_code == 404:
        return RemoteResult(REMOTE_NOT_FOUND, reason="HTTP 404")
    if r.status_code != 200:
        return RemoteResult(REMOTE_UNAVAILABLE, reason=f"HTTP {r.status_code}")
    return RemoteResult(REMOTE_FOUND, body=r.content)


def read_local_cache(path: str) -> ParseResult:
    if not os.path.exists(path):
        return ParseResult([], f"{path} does not exist")
    try:
        with open(path, "rb") as f:
            text = f.read()
    except OSError as e:
        return ParseResult([], f"read error: {e}")
    return parse_cache_xml(text)


def load_prior(source, mirror_url=None, out_dir=OUTPUT_DIR, timeout=REMOTE_TIMEOUT) -> ParseResult:
    """
    Prior cache for one source: remote mirror when configured, else local file.

    A 404 from the mirror is a confirmed "no cache yet" and does not fall back
    to the local file; any other mirror failure does.
    """
    tag = f"[source {source.source_id}]"
    if mirror_url:
        remote_url = mirror_url.format(n=source.source_id)
        remote = fetch_remote_cache(remote_url, timeout=timeout)
        if remote.status == REMOTE_FOUND:
            print(f"{tag} using remote cache {remote_url}")
            return parse_cache_xml(remote.body)
        if remote.status == REMOTE_NOT_FOUND:
            print(f"{tag} no remote cache at {remote_url}; starting fresh")
            return ParseResult([])
        print(f"{tag} remote cache unavailable ({remote.reason}); trying local")

    xml_path, _ = cache_paths(source.source_id, out_dir)
    return read_local_cache(xml_path)


# ===== WRITE =====
def atomic_write_text(path: str, text: str):
    d = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(dir=d, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except Exception:
        try:
            os.remove(tmp)
        except OSError:
            pass
        raise


def xml_safe(value) -> str:
    return _XML_INVALID.sub("", str(value))


def _add_field(item, key, value):
    if isinstance(value, dict):
        attrs = {k[1:]: xml_safe(v) for k, v in value.items() if k.startswith("@")}
        el = ET.SubElement(item, key, attrs)
        if value.get("#text"):
            el.text = xml_safe(value["#text"])
    elif value:
        ET.SubElement(item, key).text = xml_safe(value)


def build_rss(url: str, entries) -> str:
    root = ET.Element("rss", version="2.0")
    channel = ET.SubElement(root, "channel")
    ET.SubElement(channel, "title").text = xml_safe(channel_title(url))
    ET.SubElement(channel, "link").text = xml_safe(url)
    ET.SubElement(channel, "description").text = CHANNEL_DESCRIPTION
    for entry in entries:
        item = ET.SubElement(channel, "item")
        for key, value in entry.items():
            for v in (value if isinstance(value, list) else [value]):
                _add_field(item, key, v)
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True).decode("utf-8") + "\n"


def format_pubdate(entry) -> str:
    """<time> element for the HTML page; empty when there is no pubDate."""
    raw = field_text(entry.get("pubDate"))
    if not raw:
        return ""
    ts = pubdate_timestamp(entry)
    if ts == OLDEST:
        return f'<time>{html.escape(raw)}</time>'
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return (
        f'<time datetime="{dt.isoformat()}">'
        f'{dt.strftime("%Y-%m-%d %H:%M UTC")}</time>'
    )


def build_html(url: str, entries) -> str:
    title = html.escape(channel_title(url))
    lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{title}</title>",
        "</head>",
        "<body>",
        f'<h1><a href="{html.escape(url)}">{title}</a></h1>',
        "<ul>",
    ]
    for entry in entries:
        link = field_text(entry.get("link"))
        label = html.escape(field_text(entry.get("title")) or link or "(untitled)")
        if link:
            label = f'<a href="{html.escape(link)}">{label}</a>'
        when = format_pubdate(entry)
        lines.append(f"<li>{label} {when}</li>" if when else f"<li>{label}</li>")
    lines += ["</ul>", "</body>", "</html>"]
    return "\n".join(lines) + "\n"


def write_outputs(source, entries, out_dir=OUTPUT_DIR):
    """Write the RSS cache and its HTML page. Each file is replaced atomically."""
    xml_path, html_path = cache_paths(source.source_id, out_dir)
    atomic_write_text(xml_path, build_rss(source.url, entries))
    atomic_write_text(html_path, build_html(source.url, entries))
    return xml_path, html_path
