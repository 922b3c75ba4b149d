"""Equipment RAG configuration via Pydantic BaseSettings.

All settings load from environment variables with the EQUIPMENT_RAG_ prefix.
For example, EQUIPMENT_RAG_CHUNK_SIZE sets chunk_size.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class EquipmentRAGConfig(BaseSettings):
    """Configuration for ingestion and retrieval of equipment documentation.

    Attributes:
        openai_api_key: OpenAI API key for dense embedding generation.
        embedding_model: OpenAI embedding model name.
        embedding_dimensions: Dimensionality of dense embeddings.
        embedding_batch_size: Texts per embedding request. Batches run
            sequentially to stay under provider rate limits.
        chunk_size: Target chunk size in characters.
        chunk_overlap: Character overlap between consecutive split chunks.
        ocr_concurrency: Pages recognized in parallel per OCR job.
        ocr_scale: Render scale applied to PDF pages before recognition.
        ocr_target_width: Max raster width after preprocessing (A4 @ 300 DPI).
        ocr_languages: Tesseract language packs used for recognition.
        native_min_chars_per_page: Below this average the native text layer
            is considered empty and OCR takes over.
        max_upload_bytes: Upload size ceiling.
        min_text_length: Minimum cleaned text length to continue ingestion.
        insert_batch_size: Chunks written per insert statement.
        insert_retry_attempts: Attempts per chunk batch before it is skipped.
        metadata_cache_min_confidence: Cached identity must beat this to be reused.
        regex_accept_confidence: Pattern tier must beat this to skip the AI tier.
        fuzzy_threshold: Minimum word similarity for fuzzy equipment detection.
        alias_similarity_threshold: Minimum bigram similarity for alias hits.
        max_depth: Dependency traversal hop limit.
        max_results: Context sources kept after fusion.
        match_threshold: Minimum cosine similarity for manual chunks.
        match_count: Manual chunks fetched per vector search.
        full_analysis_trigger_length: Messages longer than this get AI analysis.
        history_window: Conversation turns forwarded to the completion model.
    """

    model_config = SettingsConfigDict(
        env_prefix="EQUIPMENT_RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Embedding
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 40

    # Chunking
    chunk_size: int = 1500
    chunk_overlap: int = 200

    # OCR
    ocr_concurrency: int = 4
    ocr_scale: float = 2.0
    ocr_target_width: int = 2480
    ocr_languages: str = "fra+eng"
    native_min_chars_per_page: int = 100

    # Ingestion
    max_upload_bytes: int = 50 * 1024 * 1024
    min_text_length: int = 100
    insert_batch_size: int = 20
    insert_retry_attempts: int = 3

    # Metadata extraction
    metadata_cache_min_confidence: float = 0.7
    regex_accept_confidence: float = 0.85

    # Query understanding
    fuzzy_threshold: float = 0.7
    alias_similarity_threshold: float = 0.6
    full_analysis_trigger_length: int = 100
    history_window: int = 10

    # Retrieval
    max_depth: int = 3
    max_results: int = 15
    match_threshold: float = 0.25
    match_count: int = 10
