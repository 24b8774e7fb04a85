from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, field_validator

ExtractionStatus = Literal["ok", "empty", "failed"]


class ExtractedDocument(BaseModel):
    text: str
    source_type: str
    status: ExtractionStatus = "ok"
    reason: str | None = None

    @field_validator("source_type")
    @classmethod
    def _validate_source_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"pdf", "docx"}:
            raise ValueError("source_type must be one of: pdf, docx")
        return normalized
