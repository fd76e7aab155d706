from datetime import datetime, timezone

import psycopg2

from lumina.threads import (
    add_message,
    create_thread,
    delete_thread,
    generate_title_from_message,
    get_messages,
    get_thread,
    list_threads,
    update_thread_title,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, rows=None, rowcount=1, error=None):
        self.queries = []
        self.params = []
        self._rows = list(rows or [])
        self.rowcount = rowcount
        self._error = error

    def execute(self, query, params=None):
        if self._error is not None:
            raise self._error
        self.queries.append(str(query))
        self.params.append(params)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return self._rows

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor
        self.committed = False
        self.rolled_back = False

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True


def _thread_row(title="New Chat"):
    return {"id": "t-1", "user_id": "u-1", "title": title, "created_at": NOW, "updated_at": NOW}


def test_title_uses_first_sentence():
    assert generate_title_from_message("What does John 3:16 mean? I want detail.") == "What does John 3:16 mean"


def test_title_truncates_long_sentences():
    message = "Explain the relationship between grace and works across the Pauline letters in depth"
    title = generate_title_from_message(message)

    assert title == message[:47] + "..."
    assert len(title) == 50


def test_title_falls_back_to_default():
    assert generate_title_from_message("") == "New Chat"
    assert generate_title_from_message("   ?") == "New Chat"


def test_create_thread_returns_row():
    cursor = FakeCursor(rows=[_thread_row()])
    conn = FakeConn(cursor)

    thread = create_thread(conn, "u-1")

    assert thread["title"] == "New Chat"
    assert thread["created_at"] == NOW.isoformat()
    assert conn.committed
    assert cursor.params[0] == ("u-1", "New Chat")


def test_list_threads_scopes_to_user():
    cursor = FakeCursor(rows=[_thread_row("A"), _thread_row("B")])

    threads = list_threads(FakeConn(cursor), "u-1")

    assert [t["title"] for t in threads] == ["A", "B"]
    assert "ORDER BY updated_at DESC" in cursor.queries[0]
    assert cursor.params[0] == ("u-1",)


def test_get_thread_missing():
    assert get_thread(FakeConn(FakeCursor(rows=[])), "u-1", "t-404") is None


def test_update_and_delete_report_rowcount():
    assert update_thread_title(FakeConn(FakeCursor(rowcount=1)), "u-1", "t-1", "Renamed") is True
    assert delete_thread(FakeConn(FakeCursor(rowcount=0)), "u-1", "t-2") is False


def test_get_messages_orders_ascending():
    rows = [
        {"id": 1, "thread_id": "t-1", "role": "user", "content": "hi", "verses": None, "created_at": NOW},
    ]
    cursor = FakeCursor(rows=rows)

    messages = get_messages(FakeConn(cursor), "u-1", "t-1")

    assert messages == [
        {"id": "1", "thread_id": "t-1", "role": "user", "content": "hi", "verses": [], "created_at": NOW.isoformat()}
    ]
    assert "ORDER BY m.created_at ASC" in cursor.queries[0]


def test_add_message_inserts_and_bumps_thread():
    row = {
        "id": 7,
        "thread_id": "t-1",
        "role": "assistant",
        "content": "answer",
        "verses": [{"id": "JHN.3.16"}],
        "created_at": NOW,
    }
    cursor = FakeCursor(rows=[row], rowcount=1)
    conn = FakeConn(cursor)

    message = add_message(conn, "u-1", "t-1", "assistant", "answer", [{"id": "JHN.3.16"}])

    assert message["verses"] == [{"id": "JHN.3.16"}]
    assert "UPDATE chat_threads" in cursor.queries[0]
    assert "INSERT INTO chat_messages" in cursor.queries[1]
    assert conn.committed


def test_add_message_to_foreign_thread_is_rejected():
    cursor = FakeCursor(rowcount=0)
    conn = FakeConn(cursor)

    assert add_message(conn, "u-2", "t-1", "user", "hi") is None
    assert not any("INSERT" in q for q in cursor.queries)
    assert conn.rolled_back


def test_database_errors_roll_back():
    conn = FakeConn(FakeCursor(error=psycopg2.OperationalError("server closed the connection")))

    assert list_threads(conn, "u-1") == []
    assert conn.rolled_back
    assert create_thread(conn, "u-1") is None
    assert delete_thread(conn, "u-1", "t-1") is False
