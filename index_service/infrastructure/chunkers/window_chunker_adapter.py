import structlog
from typing import List, Tuple

from index_service.application.ports.chunking_port import ChunkingPort, ChunkingError

log = structlog.get_logger(__name__)

class WindowChunkerAdapter(ChunkingPort):
    """
    Fixed-size character windows with a fixed overlap.

    Each window starts `chunk_overlap` characters before the previous one
    ended. When that would not move the cursor forward (overlap >= size) the
    next window starts where the previous one ended instead.
    """

    def chunk_text(
        self,
        text_content: str,
        chunk_size: int,
        chunk_overlap: int
    ) -> List[Tuple[int, str]]:
        if chunk_size <= 0:
            raise ChunkingError(f"Chunk size must be positive. Received: {chunk_size}")
        if chunk_overlap < 0:
            raise ChunkingError(f"Chunk overlap must be non-negative. Received: {chunk_overlap}")
        if not text_content:
            return []

        length = len(text_content)
        windows: List[Tuple[int, str]] = []
        cursor = 0
        while cursor < length:
            end = min(length, cursor + chunk_size)
            raw_window = text_content[cursor:end]
            window = raw_window.strip()
            if window:
                # Offset of the trimmed text, so text[offset:offset + len(window)] == window
                windows.append((cursor + len(raw_window) - len(raw_window.lstrip()), window))
            if end == length:
                break
            next_cursor = max(0, end - chunk_overlap)
            cursor = end if next_cursor <= cursor else next_cursor

        log.debug("WindowChunkerAdapter: Text split into chunks", text_length=length,
                  num_chunks=len(windows), chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        return windows
