"""Cached client for the API.Bible REST service.

Every fetch checks the expiring cache first, then calls upstream and reshapes
the JSON into the small records the frontend works with.
"""
import time
from typing import List, Optional

import requests
from bs4 import BeautifulSoup
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lumina.config import (
    BIBLE_API_BASE,
    BIBLE_API_KEY,
    BIBLE_API_TIMEOUT_SEC,
    BIBLE_SEARCH_LIMIT,
    UPSTREAM_SLOW_MS,
)
from lumina.events import log_upstream_event
from lumina.storage import ExpiringCache


class BibleApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    return BeautifulSoup(text, "html.parser").get_text()


class BibleApiClient:
    def __init__(
        self,
        cache: ExpiringCache,
        api_key: str = BIBLE_API_KEY,
        base_url: str = BIBLE_API_BASE,
        timeout: float = BIBLE_API_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ):
        self.cache = cache
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    def _send(self, url: str, params: Optional[dict]) -> requests.Response:
        return self.session.get(
            url,
            params=params,
            headers={"api-key": self.api_key},
            timeout=self.timeout,
        )

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        start = time.perf_counter()
        try:
            res = self._send(url, params)
        except requests.RequestException as exc:
            log_upstream_event("bible_api_error", {"path": path, "error": "request_failed"})
            raise BibleApiError(f"API.Bible request failed: {exc}") from exc
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_upstream_event(
            "bible_api_latency",
            {"path": path, "status": res.status_code, "elapsed_ms": elapsed_ms},
        )
        if elapsed_ms > UPSTREAM_SLOW_MS:
            log_upstream_event("bible_api_slow", {"path": path, "elapsed_ms": elapsed_ms})
        if not res.ok:
            log_upstream_event("bible_api_error", {"path": path, "status": res.status_code})
            raise BibleApiError(f"API.Bible error: {res.status_code}", status_code=res.status_code)
        try:
            return res.json()
        except ValueError as exc:
            raise BibleApiError("API.Bible returned invalid JSON") from exc

    def _cached(self, cache_key: str, load):
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        try:
            data = load()
        except (KeyError, TypeError, AttributeError) as exc:
            log_upstream_event("bible_api_error", {"cache_key": cache_key, "error": "unexpected_shape"})
            raise BibleApiError("unexpected API.Bible response") from exc
        self.cache.set(cache_key, data)
        return data

    def fetch_translations(self) -> List[dict]:
        def load():
            result = self._get("/bibles")
            return [
                {
                    "id": bible["id"],
                    "name": bible["name"],
                    "abbreviation": bible.get("abbreviation") or bible.get("nameLocal"),
                    "language": (bible.get("language") or {}).get("name"),
                }
                for bible in result["data"]
            ]

        return self._cached("translations", load)

    def fetch_books(self, translation_id: str) -> List[dict]:
        def load():
            result = self._get(f"/bibles/{translation_id}/books")
            return [
                {"id": book["id"], "name": book["name"], "abbreviation": book.get("abbreviation")}
                for book in result["data"]
            ]

        return self._cached(f"books-{translation_id}", load)

    def fetch_chapters(self, translation_id: str, book_id: str) -> List[dict]:
        def load():
            result = self._get(f"/bibles/{translation_id}/books/{book_id}/chapters")
            return [
                {"id": chapter["id"], "number": chapter["number"], "reference": chapter["reference"]}
                for chapter in result["data"]
            ]

        return self._cached(f"chapters-{translation_id}-{book_id}", load)

    def fetch_verses(self, translation_id: str, chapter_id: str) -> List[dict]:
        def load():
            result = self._get(f"/bibles/{translation_id}/chapters/{chapter_id}/verses")
            return [
                {"id": verse["id"], "orgId": verse.get("orgId"), "reference": verse["reference"]}
                for verse in result["data"]
            ]

        return self._cached(f"verses-{translation_id}-{chapter_id}", load)

    def fetch_chapter(self, chapter_id: str, translation_id: str) -> dict:
        def load():
            result = self._get(
                f"/bibles/{translation_id}/chapters/{chapter_id}",
                {"content-type": "text"},
            )
            data = result["data"]
            return {"content": strip_html(data.get("content")), "reference": data.get("reference")}

        return self._cached(f"chapter-{translation_id}-{chapter_id}", load)

    def fetch_verse(self, verse_id: str, translation_id: str) -> dict:
        def load():
            result = self._get(
                f"/bibles/{translation_id}/verses/{verse_id}",
                {"content-type": "text"},
            )
            data = result["data"]
            return {
                "id": data["id"],
                "reference": data.get("reference"),
                "content": strip_html(data.get("content")),
                "copyright": data.get("copyright"),
            }

        return self._cached(f"verse-{translation_id}-{verse_id}", load)

    def search_verse(self, query: str, translation_id: str) -> List[dict]:
        def load():
            result = self._get(
                f"/bibles/{translation_id}/search",
                {"query": query, "limit": BIBLE_SEARCH_LIMIT},
            )
            verses = (result.get("data") or {}).get("verses") or []
            return [
                {
                    "reference": verse.get("reference"),
                    "text": strip_html(verse.get("text")),
                    "verseId": verse.get("id"),
                }
                for verse in verses
            ]

        return self._cached(f"search-{translation_id}-{query}", load)
