"""Document ingestion: extraction, cleanup, identity, chunking and indexing."""

from src.equipment_rag.ingestion.cancellation import CancellationToken
from src.equipment_rag.ingestion.chunker import SectionAwareChunker, TextChunk, validate_chunks
from src.equipment_rag.ingestion.classifier import DocumentClassifier, detect_section_type
from src.equipment_rag.ingestion.cleaning import clean_for_rag, mark_sections
from src.equipment_rag.ingestion.fingerprint import FingerprintCache, compute_fingerprint
from src.equipment_rag.ingestion.metadata_extractor import (
    TieredMetadataExtractor,
    extract_with_patterns,
)
from src.equipment_rag.ingestion.ocr import OCREngine, is_scanned_pdf
from src.equipment_rag.ingestion.pdf import PDFTextExtractor
from src.equipment_rag.ingestion.pipeline import IngestionPipeline, validate_upload

__all__ = [
    "CancellationToken",
    "DocumentClassifier",
    "FingerprintCache",
    "IngestionPipeline",
    "OCREngine",
    "PDFTextExtractor",
    "SectionAwareChunker",
    "TextChunk",
    "TieredMetadataExtractor",
    "clean_for_rag",
    "compute_fingerprint",
    "detect_section_type",
    "extract_with_patterns",
    "is_scanned_pdf",
    "mark_sections",
    "validate_chunks",
    "validate_upload",
]
