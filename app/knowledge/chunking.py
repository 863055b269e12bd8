"""Split raw document text into overlapping chunks for embedding."""

from __future__ import annotations

from typing import List


def chunk_text(text: str, *, max_chars: int = 1200, overlap: int = 200) -> List[str]:
    """Split ``text`` on paragraph boundaries into chunks of about ``max_chars``.

    Consecutive chunks share up to ``overlap`` trailing characters of the
    previous chunk so that sentences spanning a boundary stay retrievable.
    """

    if overlap >= max_chars:
        raise ValueError("overlap must be smaller than max_chars")
    if not text or not text.strip():
        return []
    text = text.replace("\r", "")
    pieces: List[str] = []
    buf = ""
    for part in text.split("\n\n"):
        if len(buf) + len(part) + 2 <= max_chars:
            buf += ("\n\n" if buf else "") + part
            continue
        if buf.strip():
            pieces.append(buf.strip())
        buf = part
        while len(buf) > max_chars:
            pieces.append(buf[:max_chars].strip())
            buf = buf[max_chars - overlap :]
    if buf.strip():
        pieces.append(buf.strip())

    chunks: List[str] = []
    for piece in pieces:
        if not chunks:
            chunks.append(piece)
            continue
        tail = chunks[-1][-overlap:]
        merged = f"{tail}\n\n{piece}".strip()
        chunks.append(merged if len(merged) <= max_chars + overlap else piece)
    return chunks


__all__ = ["chunk_text"]
