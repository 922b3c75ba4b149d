"""Tests for text cleanup, section marking and section-aware chunking."""

from __future__ import annotations

from src.equipment_rag.ingestion.chunker import (
    SectionAwareChunker,
    TextChunk,
    estimate_page_number,
    validate_chunks,
)
from src.equipment_rag.ingestion.cleaning import (
    SECTION_MARKER,
    clean_for_rag,
    is_section_header,
    mark_sections,
)


def _long_text(target: int = 10_000) -> str:
    sentences = []
    index = 0
    while sum(len(s) + 1 for s in sentences) < target:
        sentences.append(f"Phrase {index} sur le graissage du roulement principal du malaxeur.")
        index += 1
    return " ".join(sentences)


class TestCleanForRag:
    def test_removes_page_markers_and_footers(self):
        text = "[Page 1]\nIntroduction au malaxeur\nPage 1/12\nsuite du texte"
        cleaned = clean_for_rag(text)
        assert "[Page 1]" not in cleaned
        assert "Page 1/12" not in cleaned
        assert "Introduction au malaxeur suite du texte" in cleaned

    def test_major_header_breaks_paragraph(self):
        text = "ligne un\nligne deux\nCONSIGNES DE SECURITE GENERALES\nporter des gants"
        paragraphs = clean_for_rag(text).split("\n\n")
        assert paragraphs == ["ligne un ligne deux", "CONSIGNES DE SECURITE GENERALES", "porter des gants"]


class TestMarkSections:
    def test_marks_headers(self):
        text = "Intro du manuel\nMAINTENANCE PREVENTIVE DU MALAXEUR\nGraisser chaque semaine."
        marked = mark_sections(text)
        assert f"{SECTION_MARKER} MAINTENANCE PREVENTIVE DU MALAXEUR" in marked

    def test_keeps_list_items_and_codes_separate(self):
        text = "Codes d'erreur:\nF1\n- vérifier le fusible"
        lines = mark_sections(text).split("\n")
        assert "F1" in lines
        assert "- vérifier le fusible" in lines

    def test_short_header_like_line_is_not_a_section(self):
        assert not is_section_header("PAGE 3")
        assert is_section_header("CARACTERISTIQUES TECHNIQUES GENERALES")


class TestSectionAwareChunker:
    def test_small_section_kept_complete(self):
        text = f"Intro courte.\n\n{SECTION_MARKER} CONSIGNES DE SECURITE GENERALES\nPorter des gants et des lunettes."
        chunks = SectionAwareChunker().chunk(text)
        assert [c.section for c in chunks] == ["Introduction", "CONSIGNES DE SECURITE GENERALES"]
        assert all(c.is_complete for c in chunks)

    def test_coverage_of_10k_chars(self):
        text = _long_text()
        chunks = SectionAwareChunker(chunk_size=1500, chunk_overlap=200).chunk(text)

        assert len(chunks) > 1
        assert all(len(c.content) <= 1500 for c in chunks)
        for sentence in text.split(". "):
            fragment = sentence.strip().rstrip(".")
            assert any(fragment in c.content for c in chunks), fragment
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(not c.is_complete for c in chunks)
        assert chunks[-1].total_in_section == len(chunks)

    def test_page_numbers_follow_offsets(self):
        chunks = SectionAwareChunker().chunk(_long_text())
        assert chunks[0].page_number == 1
        assert chunks[-1].page_number == estimate_page_number(chunks[-1].char_start)
        assert chunks[-1].page_number >= 3

    def test_metadata_excludes_content(self):
        chunk = SectionAwareChunker().chunk("Texte bref.")[0]
        metadata = chunk.metadata()
        assert "content" not in metadata
        assert metadata["section"] == "Introduction"
        assert metadata["token_count"] > 0


class TestValidateChunks:
    def test_empty(self):
        report = validate_chunks([])
        assert report.warnings == ["No chunks produced"]
        assert not report.is_valid

    def test_duplicates_and_low_count(self):
        chunks = [
            TextChunk(content="Même contenu", chunk_index=i, section="Intro", section_index=0)
            for i in range(2)
        ]
        report = validate_chunks(chunks)
        assert report.duplicate_chunks == 1
        assert report.size_distribution["tiny"] == 2
        assert any("Low chunk count" in w for w in report.warnings)
