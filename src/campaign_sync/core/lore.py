from __future__ import annotations

import re
from typing import Any

_TAG_RE = re.compile(r"<[^>]*>?")
_WS_RE = re.compile(r"\s+")


def clean_page_text(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def chunks_from_pages(
    pages: list[tuple[int, str]],
    *,
    source: str = "PDF",
    min_chars: int = 50,
) -> list[dict[str, Any]]:
    """Turn page-numbered text into lore chunks, skipping near-empty pages."""
    chunks: list[dict[str, Any]] = []
    for page_number, text in pages:
        content = clean_page_text(text)
        if len(content) <= min_chars:
            continue
        chunks.append({"id": f"page-{page_number}", "source": source, "page": page_number, "content": content})
    return chunks


def pack_lore(
    chunks: list[dict[str, Any]],
    *,
    max_chars: int = 500_000,
    overhead_chars: int = 50,
) -> list[list[dict[str, Any]]]:
    """Split chunks into volumes whose combined size stays under ``max_chars``.

    A chunk too large for any volume is cut into consecutive parts first;
    part ids get a ``-partN`` suffix.
    """
    if max_chars <= overhead_chars:
        raise ValueError("max_chars must exceed the per-chunk overhead")
    volumes: list[list[dict[str, Any]]] = []
    current: list[dict[str, Any]] = []
    size = 0
    for chunk in _fit_chunks(chunks, max_chars - overhead_chars):
        chunk_size = len(str(chunk.get("content") or "")) + overhead_chars
        if current and size + chunk_size > max_chars:
            volumes.append(current)
            current = []
            size = 0
        current.append(chunk)
        size += chunk_size
    if current:
        volumes.append(current)
    return volumes


def _fit_chunks(chunks: list[dict[str, Any]], limit: int):
    for chunk in chunks:
        content = str(chunk.get("content") or "")
        if len(content) <= limit:
            yield chunk
            continue
        for part, start in enumerate(range(0, len(content), limit), start=1):
            piece = {**chunk, "content": content[start:start + limit]}
            if chunk.get("id") is not None:
                piece["id"] = f"{chunk['id']}-part{part}"
            yield piece


def retrieve_context(
    query: str,
    lore_chunks: list[dict[str, Any]],
    journal_pages: dict[str, dict[str, Any]],
    *,
    limit: int = 5,
) -> list[dict[str, Any]]:
    """Keyword-score journal pages and lore chunks; journal notes rank higher."""
    if not query:
        return []
    terms = [w for w in query.lower().split(" ") if len(w) > 3]
    results: list[dict[str, Any]] = []

    for page in (journal_pages or {}).values():
        raw = _TAG_RE.sub("", page.get("content") or "")
        body = raw.lower()
        title = (page.get("title") or "").lower()
        score = 0
        for term in terms:
            if term in title:
                score += 10
            if term in body:
                score += 3
        if score > 0:
            results.append({"source": "Journal", "title": page.get("title"), "content": raw[:1500], "score": score})

    for chunk in lore_chunks or []:
        body = str(chunk.get("content") or "").lower()
        score = sum(1 for term in terms if term in body)
        if score > 0:
            results.append(
                {
                    "source": f"PDF Page {chunk.get('page')}",
                    "title": f"Page {chunk.get('page')}",
                    "content": chunk.get("content"),
                    "score": score,
                }
            )

    results.sort(key=lambda r: r["score"], reverse=True)
    return results[:limit]


def build_assistant_messages(
    question: str,
    context: list[dict[str, Any]],
    *,
    recent_chat: str = "",
    public: bool = False,
) -> list[dict[str, str]]:
    notes = "\n\n".join(f"[NOTE: {c['title']}]: {c['content']}" for c in context if c["source"] == "Journal")
    book = "\n\n".join(f"[BOOK: {c['title']}]: {c['content']}" for c in context if c["source"] != "Journal")
    if public:
        role = (
            "You are the narrator speaking to the players. Do not reveal secret plot points, "
            "stat blocks or hidden motivations."
        )
    else:
        role = "You are assisting the game master. Reveal secrets, traps, mechanics and hidden lore."
    system = "\n".join(
        [
            role,
            "Format with Markdown. Player notes take precedence over book sources.",
            "=== RECENT CHAT ===",
            recent_chat or "No recent chat.",
            "=== PLAYER NOTES ===",
            notes or "No relevant notes found.",
            "=== CAMPAIGN BOOK ===",
            book or "No relevant book sections found.",
        ]
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": question}]
