import re
from typing import List, Optional, Sequence

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from lumina.events import log_api_event

DEFAULT_THREAD_TITLE = "New Chat"
TITLE_MAX_CHARS = 50
MESSAGE_ROLES = ("user", "assistant")

RX_SENTENCE_END = re.compile(r"[.!?]")


def _iso(value):
    return value.isoformat() if hasattr(value, "isoformat") else value


def _thread_row(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "user_id": str(row["user_id"]),
        "title": row["title"],
        "created_at": _iso(row["created_at"]),
        "updated_at": _iso(row["updated_at"]),
    }


def _message_row(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "thread_id": str(row["thread_id"]),
        "role": row["role"],
        "content": row["content"],
        "verses": row.get("verses") or [],
        "created_at": _iso(row["created_at"]),
    }


def _db_failed(conn, operation: str, exc: Exception) -> None:
    conn.rollback()
    log_api_event("thread_db_error", {"operation": operation, "error": type(exc).__name__})


def generate_title_from_message(message: str) -> str:
    first_sentence = RX_SENTENCE_END.split(message or "")[0]
    if len(first_sentence) > TITLE_MAX_CHARS:
        title = message[: TITLE_MAX_CHARS - 3] + "..."
    else:
        title = first_sentence
    return title.strip() or DEFAULT_THREAD_TITLE


def create_thread(conn, user_id: str, title: str = DEFAULT_THREAD_TITLE) -> Optional[dict]:
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO chat_threads (user_id, title, created_at, updated_at)
                VALUES (%s, %s, now(), now())
                RETURNING id, user_id, title, created_at, updated_at
                """,
                (user_id, title),
            )
            row = cur.fetchone()
        conn.commit()
    except psycopg2.Error as exc:
        _db_failed(conn, "create_thread", exc)
        return None
    return _thread_row(row)


def list_threads(conn, user_id: str) -> List[dict]:
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, user_id, title, created_at, updated_at
                FROM chat_threads
                WHERE user_id = %s
                ORDER BY updated_at DESC
                """,
                (user_id,),
            )
            rows = cur.fetchall()
    except psycopg2.Error as exc:
        _db_failed(conn, "list_threads", exc)
        return []
    return [_thread_row(row) for row in rows]


def get_thread(conn, user_id: str, thread_id: str) -> Optional[dict]:
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, user_id, title, created_at, updated_at
                FROM chat_threads
                WHERE id = %s AND user_id = %s
                """,
                (thread_id, user_id),
            )
            row = cur.fetchone()
    except psycopg2.Error as exc:
        _db_failed(conn, "get_thread", exc)
        return None
    return _thread_row(row) if row else None


def update_thread_title(conn, user_id: str, thread_id: str, title: str) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE chat_threads
                SET title = %s, updated_at = now()
                WHERE id = %s AND user_id = %s
                """,
                (title, thread_id, user_id),
            )
            updated = cur.rowcount > 0
        conn.commit()
    except psycopg2.Error as exc:
        _db_failed(conn, "update_thread_title", exc)
        return False
    return updated


def delete_thread(conn, user_id: str, thread_id: str) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute(
                "DELETE FROM chat_threads WHERE id = %s AND user_id = %s",
                (thread_id, user_id),
            )
            deleted = cur.rowcount > 0
        conn.commit()
    except psycopg2.Error as exc:
        _db_failed(conn, "delete_thread", exc)
        return False
    return deleted


def get_messages(conn, user_id: str, thread_id: str) -> List[dict]:
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT m.id, m.thread_id, m.role, m.content, m.verses, m.created_at
                FROM chat_messages m
                JOIN chat_threads t ON t.id = m.thread_id
                WHERE m.thread_id = %s AND t.user_id = %s
                ORDER BY m.created_at ASC
                """,
                (thread_id, user_id),
            )
            rows = cur.fetchall()
    except psycopg2.Error as exc:
        _db_failed(conn, "get_messages", exc)
        return []
    return [_message_row(row) for row in rows]


def add_message(
    conn,
    user_id: str,
    thread_id: str,
    role: str,
    content: str,
    verses: Sequence[dict] = (),
) -> Optional[dict]:
    if role not in MESSAGE_ROLES:
        raise ValueError(f"invalid role: {role}")
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                UPDATE chat_threads
                SET updated_at = now()
                WHERE id = %s AND user_id = %s
                """,
                (thread_id, user_id),
            )
            if cur.rowcount == 0:
                conn.rollback()
                return None
            cur.execute(
                """
                INSERT INTO chat_messages (thread_id, role, content, verses, created_at)
                VALUES (%s, %s, %s, %s, now())
                RETURNING id, thread_id, role, content, verses, created_at
                """,
                (thread_id, role, content, Json(list(verses))),
            )
            row = cur.fetchone()
        conn.commit()
    except psycopg2.Error as exc:
        _db_failed(conn, "add_message", exc)
        return None
    return _message_row(row)
