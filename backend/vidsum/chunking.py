from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence, Tuple

import tiktoken

from .errors import InvalidInput
from .settings import settings

if TYPE_CHECKING:
    from .transcript_source import TranscriptSegment


class Encoding(Protocol):
    def encode(self, text: str) -> List[int]: ...

    def decode(self, tokens: List[int]) -> str: ...


@dataclass(frozen=True)
class Chunk:
    index: int
    text: str
    tokens: Tuple[int, ...]
    start_token: int
    end_token: int

    @property
    def token_count(self) -> int:
        return len(self.tokens)


@lru_cache(maxsize=4)
def default_encoding(name: Optional[str] = None) -> Encoding:
    return tiktoken.get_encoding(name or settings.tokenizer_encoding)


def join_segments(segments: Sequence["TranscriptSegment"]) -> str:
    parts = [(s.text or "").strip() for s in segments]
    return " ".join(p for p in parts if p)


def split(
    segments: Sequence["TranscriptSegment"],
    max_chunk_size: int,
    overlap: int,
    encoding: Optional[Encoding] = None,
) -> List[Chunk]:
    """Split transcript segments into token-bounded, overlapping chunks.

    Segment text is concatenated in order and tokenized once. Each chunk
    holds at most ``max_chunk_size`` tokens; every chunk after the first
    starts with the last ``overlap`` tokens of the one before it.
    """
    if not segments:
        raise InvalidInput("no transcript segments to split")
    if max_chunk_size <= 0 or overlap < 0:
        raise InvalidInput(
            f"invalid chunk bounds: size={max_chunk_size} overlap={overlap}"
        )
    if max_chunk_size <= overlap:
        raise InvalidInput(
            f"chunk size {max_chunk_size} must exceed overlap {overlap}"
        )

    enc = encoding or default_encoding()
    text = join_segments(segments)
    tokens = list(enc.encode(text))
    if not tokens:
        raise InvalidInput("transcript segments contain no text")

    chunks: List[Chunk] = []
    n = len(tokens)
    start = 0
    while True:
        end = min(start + max_chunk_size, n)
        window = tokens[start:end]
        chunks.append(
            Chunk(
                index=len(chunks),
                text=enc.decode(window),
                tokens=tuple(window),
                start_token=start,
                end_token=end,
            )
        )
        if end >= n:
            break
        start = end - overlap

    return chunks
