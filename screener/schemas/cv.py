from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from screener.core.config import settings
from screener.mail.types import MailProvider

FileType = Literal["pdf", "docx"]
ProviderName = MailProvider


class CVCreate(BaseModel):
    user_id: str
    candidate_name: str = Field(min_length=1)
    candidate_email: str
    file_name: str
    file_type: FileType
    extracted_text: str
    file_buffer: str | None = None
    source: str


class CVRecord(CVCreate):
    id: str
    date_received: datetime


class CVSummary(BaseModel):
    """A stored CV without its original bytes, as listed by the API."""

    id: str
    candidate_name: str
    candidate_email: str
    file_name: str
    file_type: FileType
    extracted_text: str
    date_received: datetime
    source: str


class AnalysisCreate(BaseModel):
    user_id: str
    cv_id: str
    job_description: str
    score: int = Field(ge=0, le=100)
    strengths: list[str] = Field(min_length=1, max_length=3)
    weaknesses: list[str] = Field(min_length=1, max_length=3)


class AnalysisRecord(AnalysisCreate):
    id: str
    analyzed_at: datetime


class CVWithAnalysis(CVSummary):
    analysis: AnalysisRecord | None = None


class FetchHistoryRecord(BaseModel):
    id: str
    user_id: str
    source: str
    cvs_count: int
    fetched_at: datetime


class DashboardStats(BaseModel):
    total_cvs: int
    last_analysis_date: datetime | None = None
    highest_score: int | None = None
    average_score: int | None = None


class FetchCVsRequest(BaseModel):
    provider: ProviderName = "gmail"
    days_back: int = Field(default=settings.harvest_default_days, ge=1, le=365)
    keywords: list[str] = Field(default_factory=list, max_length=20)


class AnalyzeCVsRequest(BaseModel):
    job_description: str = Field(min_length=10, max_length=20000)


class BatchResponse(BaseModel):
    count: int
    message: str


class EmailProviderStatus(BaseModel):
    name: str
    status: Literal["connected", "not_connected"]
    last_fetch: datetime | None = None
    auth_url: str | None = None
