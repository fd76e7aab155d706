from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class TranslationItem(BaseModel):
    id: str
    name: str
    abbreviation: Optional[str] = None
    language: Optional[str] = None


class BookItem(BaseModel):
    id: str
    name: str
    abbreviation: Optional[str] = None


class ChapterItem(BaseModel):
    id: str
    number: str
    reference: str


class VerseInfoItem(BaseModel):
    id: str
    orgId: Optional[str] = None
    reference: str


class ChapterTextResponse(BaseModel):
    content: str
    reference: Optional[str] = None


class VerseTextResponse(BaseModel):
    id: str
    reference: Optional[str] = None
    content: str
    copyright: Optional[str] = None


class SearchResultItem(BaseModel):
    reference: Optional[str] = None
    text: str
    verseId: Optional[str] = None


class SelectedVerse(BaseModel):
    id: str
    reference: str
    text: str = ""
    translation: str = ""
    bookId: Optional[str] = None
    chapterId: Optional[str] = None
    verseId: Optional[str] = None


class VerseGroup(BaseModel):
    label: str
    verses: List[SelectedVerse]


class VerseGroupRequest(BaseModel):
    verses: List[SelectedVerse]


class VerseGroupResponse(BaseModel):
    groups: List[VerseGroup]


class SelectionResponse(BaseModel):
    verses: List[SelectedVerse]


class SelectionRemoveRequest(BaseModel):
    ids: List[str] = Field(min_length=1)


class SelectionClearResponse(BaseModel):
    cleared: bool


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class StudyVerse(BaseModel):
    reference: str
    text: str
    translation: str = ""


class StudyRequest(BaseModel):
    prompt: str = ""
    verses: List[StudyVerse] = []
    conversationHistory: List[HistoryMessage] = []


class StudySection(BaseModel):
    title: str
    content: str
    kind: str


class StudyResponse(BaseModel):
    response: str
    usage: Optional[dict] = None
    sections: List[StudySection] = []


class VoiceTokenResponse(BaseModel):
    client_secret: str
    expires_at: int


class ThreadCreateRequest(BaseModel):
    title: str = "New Chat"


class ThreadUpdateRequest(BaseModel):
    title: str = Field(min_length=1)


class ThreadItem(BaseModel):
    id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str


class ThreadListResponse(BaseModel):
    items: List[ThreadItem]


class ThreadUpdateResponse(BaseModel):
    updated: bool


class ThreadDeleteResponse(BaseModel):
    deleted: bool


class MessageCreateRequest(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    verses: List[SelectedVerse] = []


class MessageItem(BaseModel):
    id: str
    thread_id: str
    role: str
    content: str
    verses: List[dict] = []
    created_at: str


class MessageListResponse(BaseModel):
    items: List[MessageItem]
