"""
Sentence Chunker  —  Token-Bounded Text Segmentation
═════════════════════════════════════════════════════

Algorithm
─────────
  1. Split the text on runs of sentence terminators (. ! ?)
     and drop fragments that are empty after stripping.
  2. Estimate tokens as ceil(chars / 4)  (no tokenizer dependency;
     close enough for text-embedding-3-small on English prose).
  3. Accumulate sentences, each re-terminated with ". ".
     When the buffer WITH the next sentence (separators and overlap
     seed included) would estimate past max_tokens and the buffer is
     non-empty:
       - close the chunk
       - seed the next buffer with the last `overlap_words` words
         of the closed chunk, so context carries across the boundary
  4. Flush whatever remains.

Properties
──────────
  - Pure and deterministic: same input, same chunks.
  - A sentence is never split. A chunk goes past max_tokens only when it
    holds one sentence that does not fit even after its overlap seed.
  - The original terminator (! or ?) is normalised to "." on re-join.
  - Empty or terminator-only input yields [].
"""

from __future__ import annotations

import math
import re

DEFAULT_MAX_TOKENS = 500
DEFAULT_OVERLAP_WORDS = 50

# Rough chars-per-token ratio for English text
CHARS_PER_TOKEN = 4

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def estimate_tokens(text: str) -> int:
    """ceil(len(text) / 4)"""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def chunk_text(
    text:          str,
    max_tokens:    int = DEFAULT_MAX_TOKENS,
    overlap_words: int = DEFAULT_OVERLAP_WORDS,
) -> list[str]:
    """
    Segment `text` into overlapping, token-bounded chunks.

    Example:
        chunk_text("One. Two! Three?", max_tokens=500)
        → ["One. Two. Three."]
    """
    chunks: list[str] = []
    buffer = ""

    for sentence in split_sentences(text):
        candidate = buffer + sentence + ". "

        if buffer and estimate_tokens(candidate.strip()) > max_tokens:
            closed = buffer.strip()
            chunks.append(closed)

            buffer = _overlap_seed(closed, overlap_words)
            candidate = buffer + sentence + ". "

        buffer = candidate

    if buffer.strip():
        chunks.append(buffer.strip())

    return chunks


def _overlap_seed(closed_chunk: str, overlap_words: int) -> str:
    if overlap_words <= 0:
        return ""
    words = closed_chunk.split()
    return " ".join(words[-overlap_words:]) + " "
