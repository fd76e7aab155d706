import re
from typing import List, Mapping, NamedTuple, Optional, Sequence

RX_NUMBER = re.compile(r"[0-9]+")


class ParsedVerseId(NamedTuple):
    book: str
    chapter: int
    verse: int


def parse_verse_id(raw: str) -> Optional[ParsedVerseId]:
    """Parse `[<translation>:]BOOK.CHAPTER.VERSE`, e.g. `KJV:JHN.3.16`.

    Returns None for anything that does not yield a book and two integer
    parts; callers treat that as an isolated entry, never as an error.
    """
    raw = raw or ""
    clean = raw.split(":")[1] if ":" in raw else raw
    parts = clean.split(".")
    if len(parts) < 3:
        return None
    if not (RX_NUMBER.fullmatch(parts[1]) and RX_NUMBER.fullmatch(parts[2])):
        return None
    return ParsedVerseId(parts[0], int(parts[1]), int(parts[2]))


def _sort_key(verse: Mapping) -> tuple:
    # Unparseable ids sort after every parsed id, then by raw id.
    raw = verse["id"]
    parsed = parse_verse_id(raw)
    if parsed is None:
        return (1, "", 0, 0, raw)
    return (0, parsed.book, parsed.chapter, parsed.verse, raw)


def _extends_run(previous: Mapping, current: Mapping) -> bool:
    prev_parsed = parse_verse_id(previous["id"])
    cur_parsed = parse_verse_id(current["id"])
    if prev_parsed is None or cur_parsed is None:
        return False
    return (
        cur_parsed.book == prev_parsed.book
        and cur_parsed.chapter == prev_parsed.chapter
        and cur_parsed.verse == prev_parsed.verse + 1
    )


def group_label(run: Sequence[Mapping]) -> str:
    first = run[0]["reference"]
    if len(run) == 1:
        return first
    last = run[-1]["reference"]
    last_parts = last.split(":")
    last_verse = last_parts[1] if len(last_parts) > 1 else ""
    if last_verse and ":" in first:
        return f"{first}-{last_verse}"
    return f"{first} - {last}"


def group_verses(verses: Sequence[Mapping]) -> List[dict]:
    """Coalesce selected verses into contiguous, labelled display ranges.

    `verses` is any sequence of mappings with `id` and `reference`; it is not
    modified. Book codes compare as plain strings, so the order follows the
    codes rather than canonical book order.
    """
    if not verses:
        return []

    ordered = sorted(verses, key=_sort_key)
    groups: List[dict] = []
    run: List[Mapping] = []
    for verse in ordered:
        if run and not _extends_run(run[-1], verse):
            groups.append({"label": group_label(run), "verses": run})
            run = []
        run.append(verse)
    if run:
        groups.append({"label": group_label(run), "verses": run})
    return groups
