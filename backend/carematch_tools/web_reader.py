from __future__ import annotations

import ipaddress
import logging
import re
import socket
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

logger = logging.getLogger(__name__)

MAX_PAGE_CHARS = 8000
MAX_REDIRECTS = 5
_REDIRECT_STATUSES = {301, 302, 303, 307, 308}
_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def _normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _strip_html(html: str) -> str:
    content = re.sub(r"(?is)<(script|style|nav|footer|header|aside)\b.*?>.*?</\1>", " ", html)
    for container in ("main", "article"):
        match = re.search(rf"(?is)<{container}\b[^>]*>(.*?)</{container}>", content)
        if match:
            content = match.group(1)
            break
    content = re.sub(r"(?is)<[^>]+>", " ", content)
    return _normalize_whitespace(content)


def _blocked_ip(ip: Any) -> bool:
    return bool(
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def public_url_error(raw_url: str) -> str | None:
    """Return why ``raw_url`` may not be fetched, or None if it is a public http(s) URL."""
    value = str(raw_url or "").strip()
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"}:
        return "only http and https URLs can be read"
    host = (parsed.hostname or "").strip().lower()
    if not host:
        return "URL has no host"
    if host in {"localhost", "localhost.localdomain"} or host.endswith(".local"):
        return "local addresses cannot be read"
    try:
        if _blocked_ip(ipaddress.ip_address(host)):
            return "private addresses cannot be read"
        return None
    except ValueError:
        pass
    try:
        resolved = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except socket.gaierror:
        return f"could not resolve {host}"
    for entry in resolved:
        try:
            resolved_ip = ipaddress.ip_address(entry[4][0])
        except ValueError:
            continue
        if _blocked_ip(resolved_ip):
            return "private addresses cannot be read"
    return None


class WebPageReader:
    def __init__(self, *, timeout: float = 10.0, disable_external: bool = False) -> None:
        self.timeout = timeout
        self.disable_external = disable_external

    def read(self, url: str) -> str:
        """Main text of a public page, truncated; failures come back as a readable message."""
        if self.disable_external:
            return "Failed to process the web page: external web access is disabled."
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            problem = public_url_error(current)
            if problem:
                return f"Failed to process the web page: {problem}."
            try:
                response = httpx.get(
                    current,
                    headers={"User-Agent": _USER_AGENT, "Accept": "text/html,application/xhtml+xml,text/plain"},
                    timeout=self.timeout,
                    follow_redirects=False,
                )
            except httpx.HTTPError as exc:
                logger.warning("reading %s failed: %s", current, exc)
                return f"Failed to process the web page: {exc}"
            location = response.headers.get("location")
            if response.status_code not in _REDIRECT_STATUSES or not location:
                break
            current = urljoin(current, location)
        else:
            return "Failed to process the web page: too many redirects."
        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("reading %s failed: %s", current, exc)
            return f"Failed to process the web page: {exc}"

        content_type = response.headers.get("content-type", "").lower()
        if "html" not in content_type and "text/plain" not in content_type:
            return f"Failed to process the web page: unsupported content type {content_type or 'unknown'}."
        text = _strip_html(response.text) if "html" in content_type else _normalize_whitespace(response.text)
        if not text:
            return "Failed to process the web page: no readable text found."
        if len(text) > MAX_PAGE_CHARS:
            return text[:MAX_PAGE_CHARS] + "..."
        return text
