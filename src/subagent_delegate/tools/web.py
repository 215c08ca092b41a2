from __future__ import annotations

import asyncio
import ipaddress
import json
import socket
import urllib.parse
from html.parser import HTMLParser
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from subagent_delegate.tools.base import CAPABILITY_WEB, ToolContext, ToolRequest, ToolResult

USER_AGENT = "subagent-delegate/1.0"
MAX_FETCH_CHARS = 5000
MAX_REDIRECTS = 5

SearchFn = Callable[[str, int], Awaitable[Dict[str, Any]]]


async def _duckduckgo_search(query: str, timeout_sec: int) -> Dict[str, Any]:
    params = {
        "q": query,
        "format": "json",
        "no_html": "1",
        "skip_disambig": "1",
        "no_redirect": "1",
    }
    async with httpx.AsyncClient(timeout=max(1, timeout_sec), headers={"User-Agent": USER_AGENT}) as client:
        resp = await client.get("https://api.duckduckgo.com/", params=params)
        resp.raise_for_status()
        parsed = resp.json()
    return parsed if isinstance(parsed, dict) else {}


def _flatten_related_topics(raw: Any) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        if isinstance(item, dict) and isinstance(item.get("Topics"), list):
            out.extend(_flatten_related_topics(item.get("Topics")))
            continue
        if not isinstance(item, dict):
            continue
        text = str(item.get("Text") or "").strip()
        url = str(item.get("FirstURL") or "").strip()
        if text or url:
            out.append({"title": text.split(" - ", 1)[0].strip() or text, "url": url, "snippet": text})
    return out


def _normalize_results(payload: Dict[str, Any], k: int) -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    abstract = str(payload.get("AbstractText") or "").strip()
    abstract_url = str(payload.get("AbstractURL") or "").strip()
    if abstract and abstract_url:
        rows.append({
            "title": str(payload.get("Heading") or "").strip() or "DuckDuckGo Instant Answer",
            "url": abstract_url,
            "snippet": abstract,
        })
    rows.extend(item for item in _flatten_related_topics(payload.get("RelatedTopics")) if item.get("url"))
    dedup: List[Dict[str, str]] = []
    seen = set()
    for row in rows:
        key = row["url"].lower()
        if key in seen:
            continue
        seen.add(key)
        dedup.append(row)
        if len(dedup) >= k:
            break
    return dedup


class DuckDuckGoSearchTool:
    name = "duckduckgo_search"
    description = "Search the web (DuckDuckGo instant answers) and return links with snippets."
    capability = CAPABILITY_WEB
    required_args = ("query",)
    path_args: Tuple[str, ...] = ()

    def __init__(self, search_fn: SearchFn = _duckduckgo_search) -> None:
        self._search_fn = search_fn

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        query = str(request.args.get("query") or "").strip()
        try:
            k = max(1, min(int(request.args.get("k") or 3), 10))
        except (TypeError, ValueError):
            k = 3
        try:
            payload = await self._search_fn(query, 15)
        except Exception as exc:
            return ToolResult(ok=False, output=f"Error: web search failed. {exc}")
        rows = _normalize_results(payload, k=k)
        if not rows:
            return ToolResult(ok=True, output=f"No web results found for: {query}")
        return ToolResult(ok=True, output=json.dumps(rows, ensure_ascii=False))


class _ReadableHtmlParser(HTMLParser):
    _SKIP_TAGS = {"script", "style", "noscript", "nav", "svg", "footer", "header"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._skip_stack: List[str] = []
        self._title_capture = False
        self.title = ""
        self.text_parts: List[str] = []

    def handle_starttag(self, tag: str, attrs: Sequence[Tuple[str, Optional[str]]]) -> None:
        t = (tag or "").lower()
        if t == "title":
            self._title_capture = True
        elif t in self._SKIP_TAGS:
            self._skip_stack.append(t)

    def handle_endtag(self, tag: str) -> None:
        t = (tag or "").lower()
        if t == "title":
            self._title_capture = False
        elif self._skip_stack and self._skip_stack[-1] == t:
            self._skip_stack.pop()

    def handle_data(self, data: str) -> None:
        text = str(data or "").strip()
        if not text:
            return
        if self._title_capture:
            self.title = f"{self.title} {text}".strip()
        elif not self._skip_stack:
            self.text_parts.append(text)


def extract_readable_text(html: str) -> Tuple[str, str]:
    parser = _ReadableHtmlParser()
    parser.feed(html or "")
    parser.close()
    return parser.title.strip(), " ".join(" ".join(parser.text_parts).split())


def _is_forbidden_ip(value: str) -> bool:
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


async def assert_public_url(raw_url: str) -> None:
    parsed = urllib.parse.urlparse(str(raw_url or "").strip())
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("Only http(s) URLs are allowed.")
    host = (parsed.hostname or "").strip().lower()
    if not host:
        raise ValueError("URL hostname is required.")
    if host == "localhost" or host.endswith(".localhost"):
        raise ValueError("Blocked URL host.")
    infos = await asyncio.to_thread(socket.getaddrinfo, host, None)
    ips = sorted({str(info[4][0]) for info in infos if info[4]})
    if not ips:
        raise ValueError("Could not resolve URL host.")
    if any(_is_forbidden_ip(ip) for ip in ips):
        raise ValueError("Blocked private or local network target.")


class FetchWebContentTool:
    name = "fetch_web_content"
    description = "Fetch a public URL and return its readable text (truncated)."
    capability = CAPABILITY_WEB
    required_args = ("url",)
    path_args: Tuple[str, ...] = ()

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        url_guard: Callable[[str], Awaitable[None]] = assert_public_url,
    ) -> None:
        self._transport = transport
        self._url_guard = url_guard

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        url = str(request.args.get("url") or "").strip()
        try:
            resp = await self._get_following_redirects(url)
        except Exception as exc:
            return ToolResult(ok=False, output=f"Error: fetch_web_content failed: {exc}")
        if resp.status_code >= 400:
            return ToolResult(ok=False, output=f"Error: HTTP {resp.status_code} for {url}")
        content_type = (resp.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
        if content_type.startswith("text/html") or content_type == "application/xhtml+xml":
            title, text = extract_readable_text(resp.text)
        else:
            title, text = "", resp.text
        truncated = len(text) > MAX_FETCH_CHARS
        payload = {
            "url": str(resp.url),
            "title": title,
            "text": text[:MAX_FETCH_CHARS],
            "truncated": truncated,
        }
        return ToolResult(ok=True, output=json.dumps(payload, ensure_ascii=False))

    async def _get_following_redirects(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=15,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=False,
            transport=self._transport,
        ) as client:
            current = url
            for _ in range(MAX_REDIRECTS + 1):
                await self._url_guard(current)
                resp = await client.get(current)
                if not resp.is_redirect:
                    return resp
                current = str(resp.url.join(resp.headers.get("location", "")))
        raise ValueError(f"Too many redirects (max {MAX_REDIRECTS}).")


WEB_TOOLS: Dict[str, type] = {
    DuckDuckGoSearchTool.name: DuckDuckGoSearchTool,
    FetchWebContentTool.name: FetchWebContentTool,
}
