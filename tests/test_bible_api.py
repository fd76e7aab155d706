import pytest
import requests

from lumina.bible_api import BibleApiClient, BibleApiError, strip_html
from lumina.storage import ExpiringCache, MemoryStore


class FakeResponse:
    def __init__(self, status_code: int, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers})
        path = url.replace("https://bible.test/v1", "")
        return self.routes.get(path, FakeResponse(404, {"message": "not found"}))


def _client(routes, cache=None):
    session = FakeSession(routes)
    client = BibleApiClient(
        cache or ExpiringCache(MemoryStore()),
        api_key="test-key",
        base_url="https://bible.test/v1/",
        session=session,
    )
    return client, session


def test_strip_html():
    assert strip_html('<p class="p"><span data-number="16" class="v">16</span>For God</p>') == "16For God"
    assert strip_html(None) == ""


def test_fetch_translations_reshapes_and_sends_api_key():
    routes = {
        "/bibles": FakeResponse(
            200,
            {
                "data": [
                    {"id": "kjv", "name": "King James", "abbreviation": "KJV", "language": {"name": "English"}},
                    {"id": "web", "name": "World English", "abbreviation": "", "nameLocal": "WEB", "language": {"name": "English"}},
                ]
            },
        )
    }
    client, session = _client(routes)

    translations = client.fetch_translations()

    assert translations == [
        {"id": "kjv", "name": "King James", "abbreviation": "KJV", "language": "English"},
        {"id": "web", "name": "World English", "abbreviation": "WEB", "language": "English"},
    ]
    assert session.calls[0]["headers"] == {"api-key": "test-key"}


def test_second_fetch_is_served_from_cache():
    routes = {"/bibles/kjv/books": FakeResponse(200, {"data": [{"id": "GEN", "name": "Genesis", "abbreviation": "Gen"}]})}
    client, session = _client(routes)

    first = client.fetch_books("kjv")
    second = client.fetch_books("kjv")

    assert first == second == [{"id": "GEN", "name": "Genesis", "abbreviation": "Gen"}]
    assert len(session.calls) == 1


def test_cached_empty_result_is_a_hit():
    routes = {"/bibles/kjv/search": FakeResponse(200, {"data": {"verses": []}})}
    client, session = _client(routes)

    assert client.search_verse("zzz", "kjv") == []
    assert client.search_verse("zzz", "kjv") == []
    assert len(session.calls) == 1


def test_fetch_chapters_and_verses():
    routes = {
        "/bibles/kjv/books/JHN/chapters": FakeResponse(
            200, {"data": [{"id": "JHN.3", "number": "3", "reference": "John 3", "bookId": "JHN"}]}
        ),
        "/bibles/kjv/chapters/JHN.3/verses": FakeResponse(
            200, {"data": [{"id": "JHN.3.16", "orgId": "JHN.3.16", "reference": "John 3:16", "bibleId": "kjv"}]}
        ),
    }
    client, _session = _client(routes)

    assert client.fetch_chapters("kjv", "JHN") == [{"id": "JHN.3", "number": "3", "reference": "John 3"}]
    assert client.fetch_verses("kjv", "JHN.3") == [
        {"id": "JHN.3.16", "orgId": "JHN.3.16", "reference": "John 3:16"}
    ]


def test_fetch_verse_strips_html_and_requests_text():
    routes = {
        "/bibles/kjv/verses/JHN.3.16": FakeResponse(
            200,
            {
                "data": {
                    "id": "JHN.3.16",
                    "reference": "John 3:16",
                    "content": "<p>For God so loved the world</p>",
                    "copyright": "PUBLIC DOMAIN",
                }
            },
        )
    }
    client, session = _client(routes)

    verse = client.fetch_verse("JHN.3.16", "kjv")

    assert verse == {
        "id": "JHN.3.16",
        "reference": "John 3:16",
        "content": "For God so loved the world",
        "copyright": "PUBLIC DOMAIN",
    }
    assert session.calls[0]["params"] == {"content-type": "text"}


def test_fetch_chapter():
    routes = {
        "/bibles/kjv/chapters/JHN.3": FakeResponse(
            200, {"data": {"content": "<p>There was a man</p>", "reference": "John 3"}}
        )
    }
    client, _session = _client(routes)

    assert client.fetch_chapter("JHN.3", "kjv") == {"content": "There was a man", "reference": "John 3"}


def test_search_verse():
    routes = {
        "/bibles/kjv/search": FakeResponse(
            200,
            {"data": {"verses": [{"id": "JHN.3.16", "reference": "John 3:16", "text": "For <b>God</b> so loved"}]}},
        )
    }
    client, session = _client(routes)

    results = client.search_verse("John 3:16", "kjv")

    assert results == [{"reference": "John 3:16", "text": "For God so loved", "verseId": "JHN.3.16"}]
    assert session.calls[0]["params"]["query"] == "John 3:16"


def test_upstream_error_raises_and_is_not_cached():
    routes = {"/bibles": FakeResponse(503, {"message": "unavailable"})}
    client, session = _client(routes)

    with pytest.raises(BibleApiError) as exc_info:
        client.fetch_translations()
    assert exc_info.value.status_code == 503

    with pytest.raises(BibleApiError):
        client.fetch_translations()
    assert len(session.calls) == 2


def test_unexpected_shape_raises():
    routes = {"/bibles/kjv/books": FakeResponse(200, {"unexpected": True})}
    client, _session = _client(routes)

    with pytest.raises(BibleApiError):
        client.fetch_books("kjv")


def test_transport_failure_raises():
    class ExplodingSession:
        def get(self, *args, **kwargs):
            raise requests.HTTPError("boom")

    client = BibleApiClient(ExpiringCache(MemoryStore()), api_key="k", session=ExplodingSession())

    with pytest.raises(BibleApiError):
        client.fetch_translations()


def test_works_without_a_store():
    routes = {"/bibles/kjv/books": FakeResponse(200, {"data": []})}
    client, session = _client(routes, cache=ExpiringCache(None))

    client.fetch_books("kjv")
    client.fetch_books("kjv")

    assert len(session.calls) == 2


def test_connection_errors_are_retried_three_times():
    class FlakySession:
        def __init__(self):
            self.calls = 0

        def get(self, *args, **kwargs):
            self.calls += 1
            raise requests.ConnectionError("connection refused")

    session = FlakySession()
    client = BibleApiClient(ExpiringCache(MemoryStore()), api_key="k", session=session)
    client._send.retry.sleep = lambda _seconds: None

    with pytest.raises(BibleApiError):
        client.fetch_translations()
    assert session.calls == 3


def test_transient_timeout_recovers_on_retry():
    class RecoveringSession:
        def __init__(self):
            self.calls = 0

        def get(self, *args, **kwargs):
            self.calls += 1
            if self.calls == 1:
                raise requests.Timeout("read timed out")
            return FakeResponse(200, {"data": [{"id": "GEN", "name": "Genesis", "abbreviation": "Gen"}]})

    session = RecoveringSession()
    client = BibleApiClient(ExpiringCache(MemoryStore()), api_key="k", session=session)
    client._send.retry.sleep = lambda _seconds: None

    assert client.fetch_books("kjv") == [{"id": "GEN", "name": "Genesis", "abbreviation": "Gen"}]
    assert session.calls == 2
