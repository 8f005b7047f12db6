"""Character-window text chunking with overlap and separator-aware breaks.

Splits document text into :class:`~fieldkb.models.kb.TextChunk` objects
of at most ``max_chunk_size`` characters.

The algorithm walks forward through the text:

1. **Window** -- the candidate window is ``[start, start + max_chunk_size)``.
2. **Break point** -- unless the window already reaches the end of the
   text, the second half of the window is searched for the *last*
   occurrence of each separator.  The separator listed earliest wins
   (paragraph break over line break over sentence end over space) and the
   window ends right after it.  With no separator the window ends at the
   hard boundary.
3. **Overlap** -- the next window starts ``overlap`` characters before the
   end of the current one, so text near a boundary is embedded twice.
   This also applies after the window that reaches the end of the text,
   which yields one final chunk holding the last ``overlap`` characters.
   When the step back would not move past the current window start (dense
   text without separators, or an overlap as large as the window) the next
   window starts exactly at the current end instead.  The walk stops once
   ``start`` reaches the end of the text.

Chunk contents are trimmed and empty chunks are dropped, but
``start_char``/``end_char`` always describe the untrimmed window in the
original text.
"""

from __future__ import annotations

import structlog

from fieldkb.models.kb import ChunkOptions, TextChunk

logger = structlog.get_logger(logger_name=__name__)


class TextChunker:
    """Splits text into overlapping, offset-tracked chunks.

    Parameters
    ----------
    max_chunk_size:
        Maximum characters per chunk (default 1000).
    overlap:
        Characters shared by consecutive chunks (default 200).
    separators:
        Preferred break strings in priority order.
    """

    def __init__(
        self,
        max_chunk_size: int = 1000,
        overlap: int = 200,
        separators: tuple[str, ...] | list[str] = ("\n\n", "\n", ". ", " "),
    ) -> None:
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if overlap < 0:
            raise ValueError("overlap must not be negative")
        self._max_chunk_size = max_chunk_size
        self._overlap = overlap
        self._separators = tuple(separators)

    @classmethod
    def from_options(cls, options: ChunkOptions) -> TextChunker:
        return cls(
            max_chunk_size=options.max_chunk_size,
            overlap=options.overlap,
            separators=options.separators,
        )

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into chunks.

        Text no longer than ``max_chunk_size`` comes back as a single,
        untrimmed chunk spanning ``[0, len(text)]``.
        """
        length = len(text)
        if length <= self._max_chunk_size:
            return [TextChunk(content=text, chunk_index=0, start_char=0, end_char=length)]

        chunks: list[TextChunk] = []
        start = 0
        while start < length:
            end = min(start + self._max_chunk_size, length)
            if end < length:
                end = self._find_break(text, start, end)

            content = text[start:end].strip()
            if content:
                chunks.append(
                    TextChunk(
                        content=content,
                        chunk_index=len(chunks),
                        start_char=start,
                        end_char=end,
                    )
                )

            # The last emitted chunk never starts after ``start``, so this also
            # covers it; comparing against ``start`` keeps blank tails finite.
            next_start = end - self._overlap
            if next_start <= start:
                next_start = end
            start = next_start

        logger.debug(
            "text_chunked",
            text_length=length,
            chunks=len(chunks),
            max_chunk_size=self._max_chunk_size,
            overlap=self._overlap,
        )
        return chunks

    def _find_break(self, text: str, start: int, end: int) -> int:
        """Return the break position for the window ``[start, end)``."""
        search_start = start + self._max_chunk_size // 2
        window = text[search_start:end]
        for separator in self._separators:
            idx = window.rfind(separator)
            if idx != -1:
                return search_start + idx + len(separator)
        return end
