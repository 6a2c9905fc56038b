# LocalChat — Local Assistant Engine
# Copyright (C) 2026 Pankaj Varma
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Web Search Tool — LocalChat live web search

Uses DuckDuckGo (no API key) for result listing and Trafilatura for clean
text extraction. Only the Generation Orchestrator's web-search mode calls it.
"""

import logging
from typing import Dict, List

import trafilatura
from duckduckgo_search import DDGS
from trafilatura.settings import use_config

from ..core.config import WebSearchConfig

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class WebSearchClient:
    """
    search(query) -> [{'title', 'url', 'snippet'}]
    scrape(url)   -> clean page text ('' when blocked or empty)
    """

    def __init__(self, max_results: int = WebSearchConfig.MAX_RESULTS):
        self.max_results = max_results
        self._config = use_config()
        # Trafilatura config handling: ensure the section exists before setting keys
        if not self._config.has_section("network"):
            self._config.add_section("network")
        self._config.set("network", "USER_AGENT", USER_AGENT)
        self._config.set("network", "MAX_REDIRECTS", "5")

    def search(self, query: str, max_results: int = None) -> List[Dict[str, str]]:
        max_results = max_results or self.max_results
        logger.info(f"[WebSearch] Searching for: '{query}'")

        with DDGS() as ddgs:
            # ddgs.text returns a generator
            raw = list(ddgs.text(query, max_results=max_results))

        results = []
        for res in raw:
            url = res.get("href", "")
            title = res.get("title", "").strip()
            if not url or not title:
                continue
            results.append({
                "title": title,
                "url": url,
                "snippet": res.get("body", "").strip()
            })

        logger.info(f"[WebSearch] {len(results)} result(s) for '{query}'")
        return results

    def scrape(self, url: str, max_length: int = WebSearchConfig.SCRAPE_MAX_CHARS) -> str:
        downloaded = trafilatura.fetch_url(url, config=self._config)
        if not downloaded:
            return ""
        text = trafilatura.extract(
            downloaded,
            include_comments=False,
            include_tables=True,
            no_fallback=False,
            config=self._config
        )
        if not text:
            return ""
        text = " ".join(text.split())
        return text[:max_length] + "..." if len(text) > max_length else text

    def search_with_content(self, query: str, max_results: int = None) -> List[Dict[str, str]]:
        """
        Search, then scrape each hit. A page that cannot be scraped falls back
        to its DuckDuckGo snippet.
        """
        results = self.search(query, max_results)
        for res in results:
            try:
                content = self.scrape(res["url"])
            except Exception as e:
                logger.warning(f"[WebSearch] Failed to scrape {res['url']}: {e}")
                content = ""
            res["content"] = content or f"[Snippet Only]: {res['snippet'][:WebSearchConfig.SNIPPET_MAX_CHARS]}"
        return results


def format_web_results(results: List[Dict[str, str]]) -> str:
    return "\n".join(
        f"{i}. **{r['title']}**\n   URL: {r['url']}\n   Summary: {r['snippet']}\n"
        f"   Detailed Content: {r.get('content', '')}\n"
        for i, r in enumerate(results, start=1)
    )
