import os
from typing import List, Optional

import psycopg2
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lumina.auth import get_optional_user, require_user
from lumina.bible_api import BibleApiClient, BibleApiError
from lumina.config import API_TITLE, API_VERSION, BIBLE_CACHE_EXPIRY_MS, DB, REDIS_URL
from lumina.events import log_api_event, reset_event_log
from lumina.grouping import group_verses
from lumina.models import (
    BookItem,
    ChapterItem,
    ChapterTextResponse,
    MessageCreateRequest,
    MessageItem,
    MessageListResponse,
    SearchResultItem,
    SelectedVerse,
    SelectionClearResponse,
    SelectionRemoveRequest,
    SelectionResponse,
    StudyRequest,
    StudyResponse,
    ThreadCreateRequest,
    ThreadDeleteResponse,
    ThreadItem,
    ThreadListResponse,
    ThreadUpdateRequest,
    ThreadUpdateResponse,
    TranslationItem,
    VerseGroupRequest,
    VerseGroupResponse,
    VerseInfoItem,
    VerseTextResponse,
    VoiceTokenResponse,
)
from lumina.storage import ExpiringCache, SelectionStore, open_store
from lumina.study import StudyError, create_voice_session, parse_response_sections, request_study
from lumina.threads import (
    DEFAULT_THREAD_TITLE,
    add_message,
    create_thread,
    delete_thread,
    generate_title_from_message,
    get_messages,
    get_thread,
    list_threads,
    update_thread_title,
)

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "1") == "1"
ALLOW_LOG_RESET = os.getenv("ALLOW_LOG_RESET", "1") == "1"
ANONYMOUS_SCOPE = "anonymous"


def init_services(state) -> None:
    """Composition root: one store shared by the response cache and the selection list."""
    store = open_store(REDIS_URL)
    state.store = store
    state.cache = ExpiringCache(store, expiry_ms=BIBLE_CACHE_EXPIRY_MS)
    state.selection = SelectionStore(store)
    state.bible_client = BibleApiClient(state.cache)


@app.on_event("startup")
def _startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")
    init_services(app.state)


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "validation_error",
                "message": "invalid request",
                "details": exc.errors(),
            }
        },
    )


@app.post("/api/logs/reset")
def reset_logs():
    if not ALLOW_LOG_RESET:
        raise HTTPException(status_code=403, detail="log reset disabled")
    reset_event_log("client")
    log_api_event("api_log_reset", {"client": "app"})
    return {"reset": True}


def get_conn():
    conn = psycopg2.connect(**DB)
    try:
        yield conn
    finally:
        conn.close()


def _service(request: Request, name: str):
    state = request.app.state
    if not hasattr(state, name):
        init_services(state)
    return getattr(state, name)


def get_bible_client(request: Request) -> BibleApiClient:
    return _service(request, "bible_client")


def get_selection_store(request: Request) -> SelectionStore:
    return _service(request, "selection")


def _require_params(**params) -> None:
    if all(params.values()):
        return
    verb = "is" if len(params) == 1 else "are"
    raise HTTPException(status_code=400, detail=f"{' and '.join(params)} {verb} required")


def _upstream(load, failure_message: str, event_type: str, payload: dict):
    try:
        result = load()
    except BibleApiError as exc:
        log_api_event(f"{event_type}_failed", {**payload, "status": exc.status_code})
        raise HTTPException(status_code=500, detail=failure_message)
    count = len(result) if isinstance(result, list) else 1
    log_api_event(event_type, {**payload, "count": count})
    return result


@app.get("/api/bible/translations", response_model=List[TranslationItem])
def get_translations(client: BibleApiClient = Depends(get_bible_client)):
    return _upstream(client.fetch_translations, "Failed to fetch translations", "bible_translations", {})


@app.get("/api/bible/books", response_model=List[BookItem])
def get_books(
    translationId: Optional[str] = Query(None),
    client: BibleApiClient = Depends(get_bible_client),
):
    _require_params(translationId=translationId)
    return _upstream(
        lambda: client.fetch_books(translationId),
        "Failed to fetch books",
        "bible_books",
        {"translation_id": translationId},
    )


@app.get("/api/bible/chapters", response_model=List[ChapterItem])
def get_chapters(
    translationId: Optional[str] = Query(None),
    bookId: Optional[str] = Query(None),
    client: BibleApiClient = Depends(get_bible_client),
):
    _require_params(translationId=translationId, bookId=bookId)
    return _upstream(
        lambda: client.fetch_chapters(translationId, bookId),
        "Failed to fetch chapters",
        "bible_chapters",
        {"translation_id": translationId, "book_id": bookId},
    )


@app.get("/api/bible/verses", response_model=List[VerseInfoItem])
def get_verses(
    translationId: Optional[str] = Query(None),
    chapterId: Optional[str] = Query(None),
    client: BibleApiClient = Depends(get_bible_client),
):
    _require_params(translationId=translationId, chapterId=chapterId)
    return _upstream(
        lambda: client.fetch_verses(translationId, chapterId),
        "Failed to fetch verses",
        "bible_verses",
        {"translation_id": translationId, "chapter_id": chapterId},
    )


@app.get("/api/bible/chapter", response_model=ChapterTextResponse)
def get_chapter(
    chapterId: Optional[str] = Query(None),
    translationId: Optional[str] = Query(None),
    client: BibleApiClient = Depends(get_bible_client),
):
    _require_params(chapterId=chapterId, translationId=translationId)
    return _upstream(
        lambda: client.fetch_chapter(chapterId, translationId),
        "Failed to fetch chapter",
        "bible_chapter",
        {"translation_id": translationId, "chapter_id": chapterId},
    )


@app.get("/api/bible/verse", response_model=VerseTextResponse)
def get_verse(
    verseId: Optional[str] = Query(None),
    translationId: Optional[str] = Query(None),
    client: BibleApiClient = Depends(get_bible_client),
):
    _require_params(verseId=verseId, translationId=translationId)
    return _upstream(
        lambda: client.fetch_verse(verseId, translationId),
        "Failed to fetch verse",
        "bible_verse",
        {"translation_id": translationId, "verse_id": verseId},
    )


@app.get("/api/bible/search", response_model=List[SearchResultItem])
def search(
    query: Optional[str] = Query(None),
    translationId: Optional[str] = Query(None),
    client: BibleApiClient = Depends(get_bible_client),
):
    _require_params(query=query, translationId=translationId)
    return _upstream(
        lambda: client.search_verse(query, translationId),
        "Failed to search verse",
        "bible_search",
        {"translation_id": translationId, "q_len": len(query)},
    )


@app.post("/api/verses/group", response_model=VerseGroupResponse)
def group_selected(payload: VerseGroupRequest):
    groups = group_verses([v.model_dump() for v in payload.verses])
    log_api_event("verses_group", {"verses": len(payload.verses), "groups": len(groups)})
    return {"groups": groups}


def _selection_scope(user: dict | None, device_id: str | None) -> str:
    if user:
        return user["user_id"]
    device_id = (device_id or "").strip()
    return device_id or ANONYMOUS_SCOPE


@app.get("/api/context", response_model=SelectionResponse)
def get_context(
    user=Depends(get_optional_user),
    x_device_id: Optional[str] = Header(None),
    selection: SelectionStore = Depends(get_selection_store),
):
    scope = _selection_scope(user, x_device_id)
    return {"verses": selection.get_selected(scope)}


@app.get("/api/context/groups", response_model=VerseGroupResponse)
def get_context_groups(
    user=Depends(get_optional_user),
    x_device_id: Optional[str] = Header(None),
    selection: SelectionStore = Depends(get_selection_store),
):
    scope = _selection_scope(user, x_device_id)
    return {"groups": group_verses(selection.get_selected(scope))}


@app.post("/api/context/verses", response_model=SelectionResponse)
def add_context_verse(
    payload: SelectedVerse,
    user=Depends(get_optional_user),
    x_device_id: Optional[str] = Header(None),
    selection: SelectionStore = Depends(get_selection_store),
):
    scope = _selection_scope(user, x_device_id)
    verses = selection.add_verse(scope, payload.model_dump())
    log_api_event("context_add", {"scope": scope, "count": len(verses)})
    return {"verses": verses}


@app.delete("/api/context/verses", response_model=SelectionResponse)
def remove_context_verses(
    payload: SelectionRemoveRequest,
    user=Depends(get_optional_user),
    x_device_id: Optional[str] = Header(None),
    selection: SelectionStore = Depends(get_selection_store),
):
    scope = _selection_scope(user, x_device_id)
    verses = selection.remove_verses(scope, payload.ids)
    log_api_event("context_remove", {"scope": scope, "removed": len(payload.ids), "count": len(verses)})
    return {"verses": verses}


@app.delete("/api/context", response_model=SelectionClearResponse)
def clear_context(
    user=Depends(get_optional_user),
    x_device_id: Optional[str] = Header(None),
    selection: SelectionStore = Depends(get_selection_store),
):
    scope = _selection_scope(user, x_device_id)
    selection.clear(scope)
    log_api_event("context_clear", {"scope": scope})
    return {"cleared": True}


@app.post("/api/ai/study", response_model=StudyResponse)
def study(payload: StudyRequest):
    try:
        result = request_study(
            payload.prompt,
            [v.model_dump() for v in payload.verses],
            [m.model_dump() for m in payload.conversationHistory],
        )
    except StudyError as exc:
        log_api_event("study_failed", {"status": exc.status_code})
        raise HTTPException(status_code=exc.status_code, detail=exc.detail)
    log_api_event(
        "study",
        {"verses": len(payload.verses), "history": len(payload.conversationHistory)},
    )
    return {**result, "sections": parse_response_sections(result["response"])}


@app.post("/api/voice/token", response_model=VoiceTokenResponse)
def voice_token():
    try:
        session = create_voice_session()
    except StudyError as exc:
        log_api_event("voice_token_failed", {"status": exc.status_code})
        raise HTTPException(status_code=exc.status_code, detail=exc.detail)
    log_api_event("voice_token", {})
    return session


@app.get("/api/threads", response_model=ThreadListResponse)
def list_threads_api(current_user=Depends(require_user), conn=Depends(get_conn)):
    items = list_threads(conn, current_user["user_id"])
    log_api_event("thread_list", {"user_id": current_user["user_id"], "count": len(items)})
    return {"items": items}


@app.post("/api/threads", response_model=ThreadItem)
def create_thread_api(
    payload: ThreadCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    thread = create_thread(conn, current_user["user_id"], payload.title or DEFAULT_THREAD_TITLE)
    if not thread:
        raise HTTPException(status_code=503, detail="chat store unavailable")
    log_api_event("thread_create", {"thread_id": thread["id"], "user_id": current_user["user_id"]})
    return thread


def _owned_thread(conn, user_id: str, thread_id: str) -> dict:
    thread = get_thread(conn, user_id, thread_id)
    if not thread:
        raise HTTPException(status_code=404, detail="thread not found")
    return thread


@app.get("/api/threads/{thread_id}", response_model=ThreadItem)
def get_thread_api(thread_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    thread = _owned_thread(conn, current_user["user_id"], thread_id)
    log_api_event("thread_get", {"thread_id": thread_id})
    return thread


@app.patch("/api/threads/{thread_id}", response_model=ThreadUpdateResponse)
def update_thread_api(
    thread_id: str,
    payload: ThreadUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    updated = update_thread_title(conn, current_user["user_id"], thread_id, payload.title)
    if not updated:
        raise HTTPException(status_code=404, detail="thread not found")
    log_api_event("thread_rename", {"thread_id": thread_id})
    return {"updated": updated}


@app.delete("/api/threads/{thread_id}", response_model=ThreadDeleteResponse)
def delete_thread_api(thread_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    deleted = delete_thread(conn, current_user["user_id"], thread_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="thread not found")
    log_api_event("thread_delete", {"thread_id": thread_id})
    return {"deleted": deleted}


@app.get("/api/threads/{thread_id}/messages", response_model=MessageListResponse)
def list_messages_api(thread_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    _owned_thread(conn, current_user["user_id"], thread_id)
    items = get_messages(conn, current_user["user_id"], thread_id)
    log_api_event("message_list", {"thread_id": thread_id, "count": len(items)})
    return {"items": items}


@app.post("/api/threads/{thread_id}/messages", response_model=MessageItem)
def post_message(
    thread_id: str,
    payload: MessageCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    thread = _owned_thread(conn, user_id, thread_id)
    message = add_message(
        conn,
        user_id,
        thread_id,
        payload.role,
        payload.content,
        [v.model_dump() for v in payload.verses],
    )
    if not message:
        raise HTTPException(status_code=503, detail="chat store unavailable")
    if payload.role == "user" and thread["title"] == DEFAULT_THREAD_TITLE:
        title = generate_title_from_message(payload.content)
        if title != DEFAULT_THREAD_TITLE:
            update_thread_title(conn, user_id, thread_id, title)
    log_api_event(
        "message_create",
        {"thread_id": thread_id, "role": payload.role, "verses": len(payload.verses)},
    )
    return message
