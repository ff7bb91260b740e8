"""
Web search through the DuckDuckGo HTML endpoint.

Failures never raise: network and parse problems come back as a message the
model can read.
"""
from __future__ import annotations

import html
import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import unquote

import httpx


logger = logging.getLogger(__name__)

SEARCH_URL = "https://html.duckduckgo.com/html/"
MAX_RESULTS = 5
USER_AGENT = "Mozilla/5.0 (compatible; AgentStudio/1.0)"

# class and href may appear in either order
_LINK_RE = re.compile(
    r'<a\s+[^>]*(?:class="[^"]*result__a[^"]*"[^>]*href="([^"]*)"'
    r'|href="([^"]*)"[^>]*class="[^"]*result__a[^"]*")[^>]*>(.*?)</a>',
    re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]+>")
_UDDG_RE = re.compile(r"uddg=([^&]+)")


def _clean_url(raw: str) -> str:
    url = html.unescape(raw)
    match = _UDDG_RE.search(url)
    if match:
        return unquote(match.group(1))
    if url.startswith("//"):
        return "https:" + url
    return url


def parse_results(page: str, limit: int = MAX_RESULTS) -> List[Tuple[str, str]]:
    results: List[Tuple[str, str]] = []
    for url_a, url_b, raw_title in _LINK_RE.findall(page):
        title = html.unescape(_TAG_RE.sub("", raw_title)).strip()
        if not title:
            continue
        url = _clean_url(url_a or url_b)
        # sponsored links
        if "duckduckgo.com/y.js" in url or "ad_provider" in url:
            continue
        results.append((title, url))
        if len(results) >= limit:
            break
    return results


def web_search(query: str, *, client: Optional[httpx.Client] = None, timeout_s: float = 15.0) -> str:
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout_s, follow_redirects=True)
    try:
        response = client.get(SEARCH_URL, params={"q": query}, headers={"User-Agent": USER_AGENT})
        if response.status_code >= 400:
            return f"Search error: Search failed: {response.status_code}. Try using execute_shell with curl for direct API access."
        results = parse_results(response.text)
    except httpx.HTTPError as exc:
        logger.warning("web_search failed for %r: %s", query, exc)
        return f"Search error: {exc}. Try using execute_shell with curl for direct API access."
    finally:
        if owns_client:
            client.close()

    if not results:
        return "No search results found. Try rephrasing your query."
    body = "\n\n".join(f"{idx}. {title}\n   {url}" for idx, (title, url) in enumerate(results, start=1))
    return f'Search results for "{query}":\n\n{body}'
