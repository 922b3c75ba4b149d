"""Section-aware chunking for equipment manuals.

Splits section-marked text (see cleaning.mark_sections) along its major
sections first. Sections that fit within chunk_size are kept intact as a
single "complete" chunk; larger sections are split with
RecursiveCharacterTextSplitter using paragraph, list, sentence and word
separators with a fixed character overlap.

A validation pass reports size distribution, duplicates and count bounds as
diagnostics. It never blocks ingestion.
"""

from __future__ import annotations

import logging
import re
import statistics

import tiktoken
from langchain_text_splitters import RecursiveCharacterTextSplitter
from pydantic import BaseModel, Field

from src.equipment_rag.ingestion.classifier import detect_section_type
from src.equipment_rag.ingestion.cleaning import SECTION_MARKER

logger = logging.getLogger(__name__)

CHARS_PER_PAGE = 3000

# Order matters: coarsest structure first, words last
SEPARATORS: list[str] = [
    re.escape("\n\n\n"),
    re.escape("\n\n"),
    re.escape("\n- "),
    re.escape("\n• "),
    r"\n\d+[.)] ",
    re.escape(". "),
    re.escape("; "),
    re.escape(", "),
    re.escape(" "),
]


def _count_tokens(text: str, encoding_name: str = "cl100k_base") -> int:
    """Count tokens in text using tiktoken encoding."""
    enc = tiktoken.get_encoding(encoding_name)
    return len(enc.encode(text))


def estimate_page_number(char_position: int, chars_per_page: int = CHARS_PER_PAGE) -> int:
    """Rough page estimate from a character offset."""
    return char_position // chars_per_page + 1


class TextChunk(BaseModel):
    """A chunk produced by the chunker, before embedding.

    Attributes:
        content: Chunk text.
        chunk_index: Position across the whole document.
        section: Title of the section the chunk belongs to.
        section_index: Position of that section in the document.
        chunk_in_section: Position of the chunk within its section.
        total_in_section: Number of chunks the section was split into.
        is_complete: True when the chunk holds an entire section.
        char_start: Offset of the chunk in the chunked text.
        page_number: Page estimate derived from char_start.
        section_type: Keyword classification of the chunk content.
        token_count: cl100k_base token count.
    """

    content: str
    chunk_index: int
    section: str
    section_index: int
    chunk_in_section: int = 0
    total_in_section: int = 1
    is_complete: bool = False
    char_start: int = 0
    page_number: int = 1
    section_type: str = "general"
    token_count: int = 0

    def metadata(self) -> dict:
        return self.model_dump(exclude={"content", "chunk_index", "page_number"})


class ChunkQualityReport(BaseModel):
    """Diagnostics computed over a document's chunks."""

    total_chunks: int = 0
    avg_size: int = 0
    median_size: int = 0
    min_size: int = 0
    max_size: int = 0
    size_distribution: dict[str, int] = Field(
        default_factory=lambda: {"tiny": 0, "small": 0, "optimal": 0, "large": 0, "huge": 0}
    )
    unique_chunks: int = 0
    duplicate_chunks: int = 0
    complete_sections: int = 0
    partial_sections: int = 0
    is_valid: bool = False
    warnings: list[str] = Field(default_factory=list)


class SectionAwareChunker:
    """Chunker that respects the section structure of a manual.

    Args:
        chunk_size: Target chunk size in characters.
        chunk_overlap: Overlap in characters between split chunks.

    Usage:
        chunker = SectionAwareChunker(chunk_size=1500, chunk_overlap=200)
        chunks = chunker.chunk(mark_sections(clean_for_rag(text)))
    """

    def __init__(self, chunk_size: int = 1500, chunk_overlap: int = 200) -> None:
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
            is_separator_regex=True,
            keep_separator="end",
            length_function=len,
        )

    def _sections(self, text: str) -> list[tuple[str, str]]:
        """Split marked text into (title, body) pairs."""
        parts = text.split(SECTION_MARKER)
        sections: list[tuple[str, str]] = []
        for index, part in enumerate(parts):
            part = part.strip()
            if not part:
                continue
            if index == 0:
                # Text before the first header
                sections.append(("Introduction", part))
                continue
            title, _, body = part.partition("\n")
            sections.append((title.strip(), body.strip() or title.strip()))

        if not sections and text.strip():
            sections.append(("Introduction", text.strip()))
        return sections

    def chunk(self, text: str) -> list[TextChunk]:
        """Split section-marked text into chunks.

        Args:
            text: Cleaned text, optionally containing SECTION_MARKER headers.

        Returns:
            Chunks in document order with section metadata.
        """
        chunks: list[TextChunk] = []
        search_from = 0

        for section_index, (title, body) in enumerate(self._sections(text)):
            if len(body) <= self.chunk_size:
                pieces = [body]
                complete = True
            else:
                pieces = [p.strip() for p in self._splitter.split_text(body) if p.strip()]
                complete = False

            for position, piece in enumerate(pieces):
                found = text.find(piece[:100], search_from)
                char_start = found if found >= 0 else search_from
                search_from = max(search_from, char_start)

                chunks.append(
                    TextChunk(
                        content=piece,
                        chunk_index=len(chunks),
                        section=title,
                        section_index=section_index,
                        chunk_in_section=position,
                        total_in_section=len(pieces),
                        is_complete=complete,
                        char_start=char_start,
                        page_number=estimate_page_number(char_start),
                        section_type=detect_section_type(piece),
                        token_count=_count_tokens(piece),
                    )
                )

        logger.info("Chunked %d chars into %d chunks", len(text), len(chunks))
        return chunks


def validate_chunks(chunks: list[TextChunk]) -> ChunkQualityReport:
    """Compute chunk quality diagnostics.

    Size buckets: tiny < 500, small < 1000, optimal <= 1800, large <= 2500,
    huge above. Duplicates compare trimmed, lowercased content.
    """
    report = ChunkQualityReport(total_chunks=len(chunks))
    if not chunks:
        report.warnings.append("No chunks produced")
        return report

    sizes = [len(c.content) for c in chunks]
    seen: set[str] = set()
    for chunk, size in zip(chunks, sizes, strict=True):
        if size < 500:
            bucket = "tiny"
        elif size < 1000:
            bucket = "small"
        elif size <= 1800:
            bucket = "optimal"
        elif size <= 2500:
            bucket = "large"
        else:
            bucket = "huge"
        report.size_distribution[bucket] += 1

        normalized = chunk.content.strip().lower()
        if normalized in seen:
            report.duplicate_chunks += 1
        else:
            seen.add(normalized)
            report.unique_chunks += 1

        if chunk.is_complete:
            report.complete_sections += 1
        else:
            report.partial_sections += 1

    report.avg_size = round(sum(sizes) / len(sizes))
    report.median_size = int(statistics.median_low(sizes))
    report.min_size = min(sizes)
    report.max_size = max(sizes)

    if report.total_chunks > 150:
        report.warnings.append(
            f"High chunk count ({report.total_chunks}) may indicate over-fragmentation"
        )
    if report.total_chunks < 20:
        report.warnings.append(f"Low chunk count ({report.total_chunks}) may indicate under-chunking")
    if report.avg_size < 800:
        report.warnings.append(f"Average chunk size too small ({report.avg_size} chars)")
    if report.size_distribution["tiny"] > len(chunks) * 0.3:
        report.warnings.append(f"{report.size_distribution['tiny']} chunks are tiny (<500 chars)")
    if report.duplicate_chunks > 0:
        report.warnings.append(f"Found {report.duplicate_chunks} duplicate chunks")

    report.is_valid = (
        20 <= report.total_chunks <= 150
        and 800 <= report.avg_size <= 2000
        and report.size_distribution["optimal"] >= len(chunks) * 0.5
        and report.duplicate_chunks == 0
    )
    return report
