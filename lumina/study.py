import re
import time
from typing import List, Optional, Sequence

import requests

from lumina.config import (
    OPENAI_API_BASE,
    OPENAI_API_KEY,
    OPENAI_CHAT_MODEL,
    OPENAI_REALTIME_MODEL,
    OPENAI_REALTIME_VOICE,
    OPENAI_TIMEOUT_SEC,
    UPSTREAM_SLOW_MS,
)
from lumina.events import log_upstream_event

STUDY_TEMPERATURE = 0.7
STUDY_MAX_TOKENS = 2000

STUDY_SYSTEM_PROMPT = """You are a knowledgeable Bible study assistant. Your role is to help users understand Scripture deeply and accurately.

Guidelines:
- Stay faithful to the biblical text and avoid denominational bias
- Provide historical and cultural context when relevant
- Explain word meanings and original language insights when helpful
- Connect themes across Scripture with cross-references
- Offer practical application while respecting the user's interpretive freedom
- When uncertain, acknowledge limitations and suggest resources
- Structure your response in clear sections: Summary, Key Themes, Word Study (if applicable), Cross References, and Application

Always cite verse references for any claims about Scripture."""

VOICE_INSTRUCTIONS = """You are an advanced AI Bible Study and Research Assistant. Your job is to help users explore Scripture with clarity, balance, and depth, but only at the level the user requests.

ADAPTIVE ANSWER STYLE:
- If the user asks a direct question, provide a focused, concise, clear answer.
- If the user asks for deeper insight (using words like "explain deeply", "break this down", "study this"), switch to full deep-dive mode with original language, cross-references, and theological insights.

GUIDING RULES:
- Stay faithful to Scripture; avoid denominational bias.
- Cite verses for scriptural claims.
- Do not generate fictional Bible content.
- Acknowledge ambiguity when it exists.
- Respect the user's interpretive freedom.
- Keep responses conversational since this is a voice interaction.

Your primary goal: Be precise when needed. Be deep when invited. Never overwhelm."""

VOICE_TURN_DETECTION = {
    "type": "server_vad",
    "threshold": 0.5,
    "prefix_padding_ms": 300,
    "silence_duration_ms": 500,
}

SECTION_KINDS = ("summary", "themes", "word study", "cross references", "application")
DEFAULT_SECTION_TITLE = "Response"

RX_MARKDOWN_HEADING = re.compile(r"^#+\s*(.+)$")
RX_COLON_HEADING = re.compile(r"^(.+):$")


class StudyError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def build_verse_context(verses: Sequence[dict]) -> str:
    return "\n\n".join(f"{v['reference']} ({v['translation']}):\n{v['text']}" for v in verses)


def build_study_messages(
    prompt: str, verses: Sequence[dict], history: Optional[Sequence[dict]] = None
) -> List[dict]:
    user_message = f"Scripture Context:\n{build_verse_context(verses)}\n\nQuestion: {prompt}"
    messages = [{"role": "system", "content": STUDY_SYSTEM_PROMPT}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in history or [])
    messages.append({"role": "user", "content": user_message})
    return messages


def _post_openai(path: str, payload: dict, event_prefix: str) -> requests.Response:
    start = time.perf_counter()
    try:
        res = requests.post(
            f"{OPENAI_API_BASE}{path}",
            json=payload,
            headers={"Authorization": f"Bearer {OPENAI_API_KEY}"},
            timeout=OPENAI_TIMEOUT_SEC,
        )
    except requests.RequestException as exc:
        log_upstream_event(f"{event_prefix}_error", {"error": "request_failed"})
        raise StudyError(502, "AI service unavailable") from exc
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_upstream_event(
        f"{event_prefix}_latency",
        {"model": payload.get("model"), "status": res.status_code, "elapsed_ms": elapsed_ms},
    )
    if elapsed_ms > UPSTREAM_SLOW_MS:
        log_upstream_event(f"{event_prefix}_slow", {"model": payload.get("model"), "elapsed_ms": elapsed_ms})
    return res


def request_study(prompt: str, verses: Sequence[dict], history: Optional[Sequence[dict]] = None) -> dict:
    if not OPENAI_API_KEY:
        log_upstream_event("study_error", {"error": "not_configured"})
        raise StudyError(500, "OpenAI API key not configured")
    if not (prompt or "").strip() or not verses:
        raise StudyError(400, "Prompt and verses are required")

    payload = {
        "model": OPENAI_CHAT_MODEL,
        "messages": build_study_messages(prompt, verses, history),
        "temperature": STUDY_TEMPERATURE,
        "max_tokens": STUDY_MAX_TOKENS,
    }
    res = _post_openai("/chat/completions", payload, "study")
    if not res.ok:
        log_upstream_event("study_error", {"status": res.status_code})
        raise StudyError(res.status_code, "AI service error")

    try:
        data = res.json()
    except ValueError as exc:
        raise StudyError(502, "AI service error") from exc
    choices = data.get("choices") or [{}]
    content = ((choices[0] or {}).get("message") or {}).get("content") or ""
    return {"response": content, "usage": data.get("usage")}


def create_voice_session() -> dict:
    if not OPENAI_API_KEY:
        log_upstream_event("voice_error", {"error": "not_configured"})
        raise StudyError(500, "OpenAI API key not configured")

    payload = {
        "model": OPENAI_REALTIME_MODEL,
        "voice": OPENAI_REALTIME_VOICE,
        "instructions": VOICE_INSTRUCTIONS,
        "input_audio_transcription": {"model": "whisper-1"},
        "turn_detection": VOICE_TURN_DETECTION,
    }
    res = _post_openai("/realtime/sessions", payload, "voice")
    if not res.ok:
        log_upstream_event("voice_error", {"status": res.status_code})
        raise StudyError(res.status_code, "Failed to create voice session")

    try:
        secret = res.json()["client_secret"]
        return {"client_secret": secret["value"], "expires_at": secret["expires_at"]}
    except (ValueError, KeyError, TypeError) as exc:
        log_upstream_event("voice_error", {"error": "unexpected_shape"})
        raise StudyError(502, "Failed to create voice session") from exc


def _section_kind(title: str) -> str:
    key = title.lower()
    return key if key in SECTION_KINDS else "summary"


def parse_response_sections(text: str) -> List[dict]:
    """Split a free-text answer into titled sections.

    Best effort only: markdown headings and `Title:` lines start a section,
    and anything unrecognised ends up in a single "Response" section.
    """
    sections: List[dict] = []
    current: Optional[dict] = None
    for line in (text or "").split("\n"):
        trimmed = line.strip()
        match = RX_MARKDOWN_HEADING.match(trimmed) or RX_COLON_HEADING.match(trimmed)
        if match:
            if current:
                sections.append(current)
            title = match.group(1).strip()
            current = {"title": title, "content": "", "kind": _section_kind(title)}
        elif current and trimmed:
            current["content"] += line + "\n"
        elif not current and trimmed and not sections:
            sections.append({"title": DEFAULT_SECTION_TITLE, "content": line + "\n", "kind": "summary"})
    if current:
        sections.append(current)
    if not sections:
        return [{"title": DEFAULT_SECTION_TITLE, "content": text or "", "kind": "summary"}]
    return sections
