"""Fixed-window source chunker with line-aware boundaries.

Window size  = ``chunk_size * chars_per_token`` characters (default 1600).
Overlap      = ``overlap * chars_per_token`` characters (default 200).
Windows advance by ``step = window - overlap`` from their raw start, so a
newline snap only lengthens the current window and never shifts the next one.
"""

from __future__ import annotations

import math

from repolens.db.models import Chunk, make_chunk_id


class Chunker:
    """Split one file's text into overlapping, sequentially indexed chunks.

    Args:
        chunk_size: Window size in (estimated) tokens.
        overlap: Overlap between consecutive windows in tokens.
        chars_per_token: Characters per token used for the estimate.
        newline_lookahead: Max distance past the raw window end to search
            for a newline to end the window on.
    """

    def __init__(
        self,
        chunk_size: int = 400,
        overlap: int = 50,
        chars_per_token: int = 4,
        newline_lookahead: int = 200,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        if newline_lookahead < 0:
            raise ValueError("newline_lookahead must be >= 0")
        self.chars_per_token = chars_per_token
        self.window = chunk_size * chars_per_token
        self.overlap = overlap * chars_per_token
        self.step = self.window - self.overlap
        self.newline_lookahead = newline_lookahead

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def chunk(self, text: str, file_path: str, repository_id: str) -> list[Chunk]:
        """Return the chunks of *text*; empty or whitespace-only text yields none.

        Chunks that trim to empty are dropped without consuming an index, so
        indices are always ``0..n-1``.
        """
        if not text.strip():
            return []

        chunks: list[Chunk] = []
        length = len(text)
        start = 0
        while start < length:
            end = self._window_end(text, start)
            body = text[start:end].strip()
            if body:
                index = len(chunks)
                chunks.append(
                    Chunk(
                        id=make_chunk_id(repository_id, file_path, index),
                        repository_id=repository_id,
                        file_path=file_path,
                        chunk_index=index,
                        start=start,
                        end=end,
                        token_count=self.estimate_tokens(body),
                        text=body,
                    )
                )
            if end >= length:
                break
            start += self.step
        return chunks

    def _window_end(self, text: str, start: int) -> int:
        end = start + self.window
        if end >= len(text):
            return len(text)
        newline = text.find("\n", end, end + self.newline_lookahead)
        if newline != -1:
            return newline + 1
        return end
