"""Pydantic schemas for the ingestion, query and document endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.equipment_rag.ingestion.classifier import DOCUMENT_TYPES


class ConversationTurn(BaseModel):
    """A previous message in the conversation."""

    role: Literal["user", "assistant"] = Field(..., description="Message role")
    content: str = Field(..., description="Message content")


class QueryRequest(BaseModel):
    """Request schema for a streamed maintenance question."""

    message: str = Field(..., min_length=1, max_length=4000, description="Technician question")
    asset_id: str | None = Field(
        default=None, description="Asset the question is about; detected from the message when omitted"
    )
    organization_id: str | None = Field(
        default=None, description="Must match the caller's organization when given"
    )
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list, description="Earlier turns, oldest first"
    )


class DocumentTypesUpdate(BaseModel):
    """Manual override of a document's content types."""

    document_types: list[str] = Field(..., min_length=1, description="Confirmed content types")

    @field_validator("document_types")
    @classmethod
    def known_types(cls, value: list[str]) -> list[str]:
        unknown = [t for t in value if t not in DOCUMENT_TYPES]
        if unknown:
            raise ValueError(f"Unknown document types: {', '.join(unknown)}")
        return list(dict.fromkeys(value))
