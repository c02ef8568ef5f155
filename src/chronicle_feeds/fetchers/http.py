from __future__ import annotations

from typing import Optional
from urllib.parse import quote

import requests

from ..errors import TransportError


class FeedFetcher:
    def __init__(
        self,
        timeout_sec: float,
        user_agent: str,
        proxy_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.timeout_sec = timeout_sec
        self.user_agent = user_agent
        self.proxy_url = (proxy_url or "").strip() or None
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.user_agent})

    def request_url(self, feed_url: str) -> str:
        if not self.proxy_url:
            return feed_url
        return self.proxy_url.replace("{url}", quote(feed_url, safe=""))

    def get_text(self, feed_url: str) -> str:
        url = self.request_url(feed_url)
        try:
            response = self.session.get(url, timeout=self.timeout_sec)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(feed_url, f"HTTP request failed: {exc}") from exc

        content_type = (response.headers.get("Content-Type") or "").lower()
        if "charset" not in content_type:
            response.encoding = "utf-8"
        return response.text
