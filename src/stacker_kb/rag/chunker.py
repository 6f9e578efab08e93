"""Sliding-window and section-aware text chunking."""

import re
from dataclasses import dataclass, asdict
from typing import Optional

from ..errors import ConfigurationError

# Markdown ATX headers ("# Title" .. "###### Title")
_HEADER_PATTERN = re.compile(r"^#{1,6}\s+\S")


@dataclass
class TextChunk:
    """A bounded segment of a source unit."""

    text: str
    start_offset: int
    index: int
    section_header: Optional[str] = None

    @property
    def end_offset(self) -> int:
        return self.start_offset + len(self.text)

    def to_dict(self) -> dict:
        """Convert to dictionary for display/debugging."""
        return asdict(self)


def validate_chunking(max_chunk_size: int, overlap: int) -> None:
    """Reject sizing that would never terminate or makes no sense.

    Raises:
        ConfigurationError: If max_chunk_size <= 0, overlap < 0 or overlap >= max_chunk_size
    """
    if max_chunk_size <= 0:
        raise ConfigurationError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if overlap < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap}")
    if overlap >= max_chunk_size:
        raise ConfigurationError(
            f"overlap ({overlap}) must be smaller than max_chunk_size ({max_chunk_size})"
        )


def chunk_text(text: str, max_chunk_size: int, overlap: int) -> list[TextChunk]:
    """Split text into fixed-size overlapping windows.

    Windows advance by ``max_chunk_size - overlap`` characters, so every
    pair of adjacent chunks shares exactly ``overlap`` characters and the
    last chunk ends at ``len(text)``. Text that fits in one window yields a
    single chunk equal to the text.

    Args:
        text: Text to split
        max_chunk_size: Window size in characters
        overlap: Characters shared by adjacent windows

    Returns:
        Ordered list of TextChunk objects (empty for empty text)
    """
    validate_chunking(max_chunk_size, overlap)

    length = len(text)
    if length == 0:
        return []
    if length <= max_chunk_size:
        return [TextChunk(text=text, start_offset=0, index=0)]

    stride = max_chunk_size - overlap
    chunks = []
    start = 0
    while True:
        end = min(start + max_chunk_size, length)
        chunks.append(TextChunk(text=text[start:end], start_offset=start, index=len(chunks)))
        if end == length:
            break
        start += stride

    return chunks


def split_sections(text: str) -> list[tuple[Optional[str], int, str]]:
    """Split a markdown document on header lines.

    Each section starts at its header line and runs to the next header, so
    a header is never split from its first line of body. Text before the
    first header is returned as a section with no header.

    Returns:
        List of (header, start_offset, section_text) tuples covering the text
    """
    sections = []
    current_header = None
    current_start = 0
    offset = 0
    in_fence = False

    for line in text.splitlines(keepends=True):
        stripped = line.strip()
        if stripped.startswith("```") or stripped.startswith("~~~"):
            in_fence = not in_fence
        elif not in_fence and _HEADER_PATTERN.match(line):
            # Save previous section
            if offset > current_start:
                sections.append((current_header, current_start, text[current_start:offset]))
            current_header = line.lstrip("#").strip()
            current_start = offset
        offset += len(line)

    # Add final section
    if current_start < len(text):
        sections.append((current_header, current_start, text[current_start:]))

    return sections


def chunk_sections(text: str, max_chunk_size: int, overlap: int) -> list[TextChunk]:
    """Chunk a sectioned document, keeping each section header as metadata.

    Sections that fit in one window become one chunk. Larger sections are
    split with :func:`chunk_text`; offsets stay relative to the whole text.
    Whitespace-only sections are dropped.

    Args:
        text: Document text
        max_chunk_size: Window size in characters
        overlap: Characters shared by adjacent windows within one section

    Returns:
        Ordered list of TextChunk objects with sequential indexes
    """
    validate_chunking(max_chunk_size, overlap)

    chunks: list[TextChunk] = []
    for header, section_start, section_text in split_sections(text):
        if not section_text.strip():
            continue
        for piece in chunk_text(section_text, max_chunk_size, overlap):
            chunks.append(TextChunk(
                text=piece.text,
                start_offset=section_start + piece.start_offset,
                index=len(chunks),
                section_header=header,
            ))

    return chunks
